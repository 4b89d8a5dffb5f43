"""OpenAI chat-completions provider, also the base for OpenAI-compatible endpoints."""

from typing import Any

from openai import AsyncOpenAI

from chorus.models import Request, Response, Usage
from chorus.providers.base import FUNCTION_CALLING, STREAMING, VISION
from chorus.providers.sdk import SDKProvider


class OpenAIProvider(SDKProvider):
    def _make_client(self, api_key: str) -> AsyncOpenAI:
        return AsyncOpenAI(api_key=api_key)

    def capabilities(self) -> frozenset[str]:
        return frozenset({FUNCTION_CALLING, STREAMING, VISION})

    async def _send(self, request: Request) -> Any:
        return await self._client.chat.completions.create(
            model=self._config.model,
            messages=[{"role": "user", "content": request.prompt}],
            max_tokens=self._max_tokens(request),
            temperature=self._temperature(request),
        )

    def _to_response(self, raw: Any) -> Response:
        choice = raw.choices[0] if raw.choices else None
        if choice is None or not choice.message.content:
            raise self._fail("Empty response content")

        usage = None
        if raw.usage:
            usage = Usage(
                prompt_tokens=raw.usage.prompt_tokens,
                completion_tokens=raw.usage.completion_tokens,
                total_tokens=raw.usage.total_tokens,
            )
        return Response(
            content=choice.message.content,
            provider=self._config.name,
            model=self._config.model,
            usage=usage,
        )
