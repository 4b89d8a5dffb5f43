"""Nested pipeline: a chain of sub-pipelines, each feeding the next."""

import dataclasses
import logging

from chorus.errors import PipelineError
from chorus.models import Request, Response
from chorus.pipelines.base import Option, Pipeline, build_options

logger = logging.getLogger(__name__)


class NestedPipeline(Pipeline):
    def __init__(self, stages: list[Pipeline] | None = None, *opts: Option) -> None:
        self.stages: list[Pipeline] = list(stages or [])
        self.options = build_options(opts)

    def describe(self) -> str:
        return "nested"

    def add_stage(self, stage: Pipeline) -> "NestedPipeline":
        self.stages.append(stage)
        return self

    def stage_count(self) -> int:
        return len(self.stages)

    def get_stage(self, index: int) -> Pipeline:
        """Return the stage at 0-based index.

        Raises:
            IndexError: If index is out of range.
        """
        if not 0 <= index < len(self.stages):
            raise IndexError(f"stage index {index} out of range")
        return self.stages[index]

    def with_options(self, *opts: Option) -> "NestedPipeline":
        clone = super().with_options(*opts)
        clone.stages = list(self.stages)
        return clone

    async def execute_with_request(self, request: Request) -> Response:
        """Run stages in order; the first stage sees the full request, later ones its predecessor's text.

        Raises:
            PipelineError: "needs at least one stage" when empty, otherwise naming the
                1-based index of the first failing stage.
        """
        if not self.stages:
            raise PipelineError("nested pipeline needs at least one stage")

        current = request
        response: Response | None = None
        for index, stage in enumerate(self.stages, start=1):
            logger.info("Nested stage %d/%d: %s", index, len(self.stages), stage.describe())
            try:
                response = await stage.execute_with_request(current)
            except Exception as exc:
                raise PipelineError(f"stage {index} failed: {exc}", stage=index) from exc
            current = dataclasses.replace(current, prompt=response.content)

        return dataclasses.replace(
            response,
            metadata={
                **response.metadata,
                "pipeline_type": "nested",
                "pipeline_stages": len(self.stages),
            },
        )
