"""Single-provider pipeline with retries, an optional fallback provider and a response cache."""

import dataclasses
import logging
import time

from chorus.errors import PipelineError
from chorus.models import Request, Response
from chorus.pipelines.base import Option, Pipeline, build_options, generate_with_retries
from chorus.providers.base import AIProvider

logger = logging.getLogger(__name__)


class SimplePipeline(Pipeline):
    def __init__(self, provider: AIProvider, *opts: Option) -> None:
        self.provider = provider
        self.options = build_options(opts)
        self._cache: dict[tuple, tuple[float, Response]] = {}

    def describe(self) -> str:
        return self.provider.name()

    def with_options(self, *opts: Option) -> "SimplePipeline":
        clone = super().with_options(*opts)
        clone._cache = {}
        return clone

    async def execute_with_request(self, request: Request) -> Response:
        key = (request.prompt, request.temperature, request.max_tokens)
        if self.options.cache:
            cached = self._cache_get(key)
            if cached is not None:
                logger.debug("Cache hit for provider %s", self.provider.name())
                return cached

        try:
            response = await generate_with_retries(self.provider, request, self.options.max_retries)
        except Exception as exc:
            fallback = self.options.fallback_provider
            if fallback is None:
                raise PipelineError(
                    f"provider {self.provider.name()} failed: {exc}",
                    provider=self.provider.name(),
                ) from exc
            logger.warning(
                "Provider %s failed, trying fallback %s: %s",
                self.provider.name(),
                fallback.name(),
                exc,
            )
            try:
                response = await fallback.generate(request)
            except Exception as fallback_exc:
                # Report the primary failure; the fallback error is chained for debugging
                raise PipelineError(
                    f"provider {self.provider.name()} failed: {exc} "
                    f"(fallback {fallback.name()} also failed: {fallback_exc})",
                    provider=self.provider.name(),
                ) from exc

        if self.options.cache:
            now = time.monotonic()
            self._evict_expired(now)
            self._cache[key] = (now + self.options.cache_ttl, response)
        return response

    def _evict_expired(self, now: float) -> None:
        expired = [k for k, (expires_at, _) in self._cache.items() if now >= expires_at]
        for k in expired:
            del self._cache[k]

    def _cache_get(self, key: tuple) -> Response | None:
        entry = self._cache.get(key)
        if entry is None:
            return None
        expires_at, response = entry
        if time.monotonic() >= expires_at:
            del self._cache[key]
            return None
        return dataclasses.replace(response, metadata={**response.metadata, "cached": True})
