"""Shared pipeline contract, options and retry plumbing."""

import asyncio
import copy
import dataclasses
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

from chorus.models import Request, Response
from chorus.providers.base import AIProvider

logger = logging.getLogger(__name__)


@dataclass
class PipelineOptions:
    max_retries: int = 1                     # total attempts; 1 = no retry
    cache: bool = False
    cache_ttl: int = 0                       # seconds
    fallback_provider: AIProvider | None = None


Option = Callable[[PipelineOptions], None]


def with_retries(max_retries: int) -> Option:
    """Bound the number of attempts per provider call."""
    def apply(options: PipelineOptions) -> None:
        options.max_retries = max_retries
    return apply


def with_cache(ttl_seconds: int) -> Option:
    def apply(options: PipelineOptions) -> None:
        options.cache = True
        options.cache_ttl = ttl_seconds
    return apply


def with_fallback(provider: AIProvider) -> Option:
    def apply(options: PipelineOptions) -> None:
        options.fallback_provider = provider
    return apply


def build_options(opts: tuple[Option, ...] | list[Option], base: PipelineOptions | None = None) -> PipelineOptions:
    """Apply opts on top of a copy of base (or the defaults)."""
    options = dataclasses.replace(base) if base is not None else PipelineOptions()
    for opt in opts:
        opt(options)
    return options


class Pipeline(ABC):
    """A composable unit mapping one input to one output.

    Subclasses implement execute_with_request; execute is the plain-text view of it.
    """

    options: PipelineOptions

    async def execute(self, text: str) -> str:
        response = await self.execute_with_request(Request(prompt=text))
        return response.content

    @abstractmethod
    async def execute_with_request(self, request: Request) -> Response:
        ...

    def with_options(self, *opts: Option) -> "Pipeline":
        """Return a copy of this pipeline with opts applied. The original is unchanged."""
        clone = copy.copy(self)
        clone.options = build_options(opts, self.options)
        return clone

    def describe(self) -> str:
        return type(self).__name__


async def generate_with_retries(
    provider: AIProvider,
    request: Request,
    max_retries: int,
    context: str = "",
) -> Response:
    """Call provider, re-trying the same request up to max_retries attempts in total.

    Cancellation is never retried: asyncio.CancelledError is a BaseException and
    passes straight through. The last failure is re-raised unchanged so callers
    can wrap it with stage/round context.
    """
    attempts = max(1, max_retries)
    attempt = 0
    while True:
        attempt += 1
        try:
            return await provider.generate(request)
        except Exception as exc:
            if attempt >= attempts:
                raise
            logger.warning(
                "Provider %s failed%s (attempt %d/%d), retrying: %s",
                provider.name(),
                f" {context}" if context else "",
                attempt,
                attempts,
                exc,
            )
            # cancellation checkpoint between attempts
            await asyncio.sleep(0)


class PipelineProvider(AIProvider):
    """Adapts a Pipeline so it can stand in for a provider.

    Lets a whole sub-pipeline take a provider slot inside Serial, Parallel or
    Collaborative pipelines.
    """

    def __init__(self, pipeline: Pipeline, name: str | None = None) -> None:
        self._pipeline = pipeline
        self._name = name or pipeline.describe()

    def name(self) -> str:
        return self._name

    def model_string(self) -> str:
        return "pipeline"

    async def generate(self, request: Request) -> Response:
        response = await self._pipeline.execute_with_request(request)
        if not response.provider:
            response = dataclasses.replace(response, provider=self._name)
        return response
