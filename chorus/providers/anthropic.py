"""Anthropic Claude provider using anthropic SDK with native async."""

from typing import Any

import anthropic as anthropic_sdk

from chorus.models import Request, Response, Usage
from chorus.providers.base import FUNCTION_CALLING, STREAMING, VISION
from chorus.providers.sdk import SDKProvider


class AnthropicProvider(SDKProvider):
    """Anthropic Claude provider via anthropic SDK."""

    def _make_client(self, api_key: str) -> anthropic_sdk.AsyncAnthropic:
        return anthropic_sdk.AsyncAnthropic(api_key=api_key)

    def capabilities(self) -> frozenset[str]:
        return frozenset({FUNCTION_CALLING, STREAMING, VISION})

    async def _send(self, request: Request) -> Any:
        return await self._client.messages.create(
            model=self._config.model,
            max_tokens=self._max_tokens(request),
            temperature=self._temperature(request),
            messages=[{"role": "user", "content": request.prompt}],
        )

    def _to_response(self, raw: Any) -> Response:
        if not raw.content:
            raise self._fail("Empty response content")

        # tool_use and thinking blocks carry no answer text
        text = [block.text for block in raw.content if block.type == "text"]
        if not text:
            raise self._fail("No text blocks in response")

        usage = None
        if raw.usage:
            usage = Usage(
                prompt_tokens=raw.usage.input_tokens,
                completion_tokens=raw.usage.output_tokens,
                total_tokens=raw.usage.input_tokens + raw.usage.output_tokens,
            )
        return Response(content="\n".join(text), provider=self._config.name, model=self._config.model, usage=usage)
