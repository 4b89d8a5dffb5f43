"""High-availability pipeline over interchangeable providers.

The strategy is chosen explicitly when the pipeline is built:

- "fallback": try providers one at a time in list order; the first success wins.
- "race": call every provider at once; the first success wins and the
  remaining calls are cancelled.
"""

import asyncio
import dataclasses
import logging

from chorus.errors import ConfigurationError, PipelineError
from chorus.models import Request, Response
from chorus.pipelines.base import Option, Pipeline, build_options, generate_with_retries
from chorus.providers.base import AIProvider

logger = logging.getLogger(__name__)

FALLBACK = "fallback"
RACE = "race"
STRATEGIES = (FALLBACK, RACE)


class HighAvailabilityPipeline(Pipeline):
    def __init__(self, providers: list[AIProvider], strategy: str = FALLBACK, *opts: Option) -> None:
        if strategy not in STRATEGIES:
            raise ConfigurationError(
                f"unknown high availability strategy '{strategy}' (expected one of: {', '.join(STRATEGIES)})"
            )
        self.providers = list(providers)
        self.strategy = strategy
        self.options = build_options(opts)

    def describe(self) -> str:
        return f"high_availability({self.strategy})"

    async def execute_with_request(self, request: Request) -> Response:
        if not self.providers:
            raise PipelineError("high availability pipeline needs at least one provider")

        if self.strategy == RACE:
            response = await self._race(request)
        else:
            response = await self._fallback(request)
        return dataclasses.replace(
            response,
            metadata={**response.metadata, "pipeline_type": "high_availability", "ha_strategy": self.strategy},
        )

    async def _fallback(self, request: Request) -> Response:
        errors: list[str] = []
        for provider in self.providers:
            try:
                return await generate_with_retries(provider, request, self.options.max_retries)
            except Exception as exc:
                logger.warning("Provider %s failed, moving to the next provider: %s", provider.name(), exc)
                errors.append(f"{provider.name()}: {exc}")
        raise PipelineError(f"all providers failed: {'; '.join(errors)}")

    async def _race(self, request: Request) -> Response:
        tasks = {
            asyncio.ensure_future(generate_with_retries(p, request, self.options.max_retries)): p
            for p in self.providers
        }
        errors: dict[int, str] = {}
        order = {task: i for i, task in enumerate(tasks)}
        pending = set(tasks)
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    exc = task.exception()
                    if exc is None:
                        logger.info("Race won by %s", tasks[task].name())
                        return task.result()
                    logger.warning("Provider %s failed in race: %s", tasks[task].name(), exc)
                    errors[order[task]] = f"{tasks[task].name()}: {exc}"
        finally:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        # report failures in provider-list order
        details = "; ".join(errors[i] for i in sorted(errors))
        raise PipelineError(f"all providers failed: {details}")
