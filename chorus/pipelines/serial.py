"""Serial pipeline: each provider's output becomes the next provider's input."""

import dataclasses
import logging

from chorus.errors import PipelineError
from chorus.models import Request, Response
from chorus.pipelines.base import Option, Pipeline, build_options, generate_with_retries
from chorus.providers.base import AIProvider

logger = logging.getLogger(__name__)


class SerialPipeline(Pipeline):
    def __init__(self, providers: list[AIProvider], *opts: Option) -> None:
        self.providers = list(providers)
        self.options = build_options(opts)

    def describe(self) -> str:
        return "serial"

    async def execute_with_request(self, request: Request) -> Response:
        """Run every stage in order and return the last stage's response.

        Raises:
            PipelineError: Naming the 1-based stage index and provider of the first
                stage that fails after exhausting retries.
        """
        if not self.providers:
            raise PipelineError("serial pipeline needs at least one provider")

        current = request
        response: Response | None = None
        for index, provider in enumerate(self.providers, start=1):
            logger.info("Serial stage %d/%d: %s", index, len(self.providers), provider.name())
            try:
                response = await generate_with_retries(
                    provider, current, self.options.max_retries, context=f"in stage {index}"
                )
            except Exception as exc:
                raise PipelineError(
                    f"stage {index} ({provider.name()}) failed: {exc}",
                    stage=index,
                    provider=provider.name(),
                ) from exc
            current = dataclasses.replace(current, prompt=response.content)

        return dataclasses.replace(
            response,
            metadata={
                **response.metadata,
                "pipeline_type": "serial",
                "pipeline_stages": len(self.providers),
            },
        )
