"""Shared plumbing for providers backed by a vendor SDK client."""

import asyncio
import logging
import os
import time
from abc import abstractmethod
from typing import Any

from chorus.models import Request, Response
from chorus.providers.base import AIProvider, ProviderError
from config.config_loader import ModelConfig

logger = logging.getLogger(__name__)


class SDKProvider(AIProvider):
    """AIProvider that reads its API key from the environment and calls one SDK method.

    Subclasses build the client, send one request and map the raw SDK result to a
    Response. Timeouts and SDK exceptions become ProviderError here; cancellation
    is left alone.
    """

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = self._make_client(api_key)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    @abstractmethod
    def _make_client(self, api_key: str) -> Any:
        ...

    @abstractmethod
    async def _send(self, request: Request) -> Any:
        """Issue the SDK call for request and return the raw SDK response."""
        ...

    @abstractmethod
    def _to_response(self, raw: Any) -> Response:
        """Map a raw SDK response to a Response. Raises ProviderError when it has no text."""
        ...

    def _max_tokens(self, request: Request) -> int:
        return request.max_tokens if request.max_tokens is not None else self._config.max_tokens

    def _temperature(self, request: Request) -> float:
        return request.temperature if request.temperature is not None else self._config.temperature

    def _fail(self, message: str) -> ProviderError:
        return ProviderError(self._config.name, message)

    async def generate(self, request: Request) -> Response:
        start = time.monotonic()
        try:
            raw = await asyncio.wait_for(self._send(request), timeout=self._config.timeout_sec)
        except TimeoutError as exc:
            raise self._fail(f"Request timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise self._fail(f"API call failed: {exc}") from exc

        latency = time.monotonic() - start
        response = self._to_response(raw)
        response.metadata["latency_sec"] = latency
        logger.info(
            "%s (%s): %.2fs, %s tokens",
            self._config.name,
            self._config.model,
            latency,
            response.usage.total_tokens if response.usage else None,
        )
        return response
