"""Parallel pipeline: fan the same request out to every provider, then combine."""

import asyncio
import dataclasses
import logging

from chorus.errors import PipelineError
from chorus.models import Request, Response
from chorus.pipelines.base import Option, Pipeline, build_options, generate_with_retries
from chorus.pipelines.combiners import ConcatCombiner, ResultCombiner
from chorus.providers.base import AIProvider

logger = logging.getLogger(__name__)


class ParallelPipeline(Pipeline):
    def __init__(
        self,
        providers: list[AIProvider],
        combiner: ResultCombiner | None = None,
        *opts: Option,
    ) -> None:
        self.providers = list(providers)
        self.combiner = combiner or ConcatCombiner()
        self.options = build_options(opts)

    def describe(self) -> str:
        return "parallel"

    async def _call_provider(self, provider: AIProvider, request: Request) -> Response | Exception:
        """Run one slot. Never raises for provider failures; the exception is returned instead."""
        try:
            return await generate_with_retries(provider, request, self.options.max_retries)
        except Exception as exc:
            logger.warning("Provider %s failed in parallel fan-out: %s", provider.name(), exc)
            return exc

    async def execute_with_request(self, request: Request) -> Response:
        """Call all providers concurrently and hand the successful responses to the combiner.

        Successful responses reach the combiner in provider-list order, whatever order
        they completed in. Failed slots are left out.

        Raises:
            PipelineError: If there are no providers, or every provider failed.
            CombinationError: Propagated unchanged from the combiner.
        """
        if not self.providers:
            raise PipelineError("parallel pipeline needs at least one provider")

        logger.info("Fanning out to %d providers", len(self.providers))
        # gather returns outcomes in argument order, one slot per provider
        outcomes = await asyncio.gather(
            *(self._call_provider(p, request) for p in self.providers)
        )

        successes = [o for o in outcomes if isinstance(o, Response)]
        if not successes:
            details = "; ".join(f"{p.name()}: {o}" for p, o in zip(self.providers, outcomes))
            raise PipelineError(f"all providers failed: {details}")

        logger.info("Parallel fan-out complete: %d/%d providers succeeded", len(successes), len(self.providers))
        combined = await self.combiner.combine(successes)
        failed = [p.name() for p, o in zip(self.providers, outcomes) if not isinstance(o, Response)]
        metadata = {**combined.metadata, "pipeline_type": "parallel"}
        if failed:
            metadata["failed_providers"] = failed
        return dataclasses.replace(combined, metadata=metadata)
