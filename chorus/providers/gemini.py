"""Gemini provider using google-genai SDK with native async."""

from typing import Any

from google import genai
from google.genai import types as genai_types

from chorus.models import Request, Response, Usage
from chorus.providers.base import FUNCTION_CALLING, MULTIMODAL, STREAMING, VISION
from chorus.providers.sdk import SDKProvider


class GeminiProvider(SDKProvider):
    """Google Gemini provider via google-genai SDK."""

    def _make_client(self, api_key: str) -> genai.Client:
        return genai.Client(api_key=api_key)

    def capabilities(self) -> frozenset[str]:
        return frozenset({FUNCTION_CALLING, STREAMING, VISION, MULTIMODAL})

    async def _send(self, request: Request) -> Any:
        return await self._client.aio.models.generate_content(
            model=self._config.model,
            contents=request.prompt,
            config=genai_types.GenerateContentConfig(
                max_output_tokens=self._max_tokens(request),
                temperature=self._temperature(request),
            ),
        )

    def _to_response(self, raw: Any) -> Response:
        if not raw.text:
            raise self._fail("Empty response text")

        usage = None
        meta = raw.usage_metadata
        if meta:
            # counts are None when the API omits them
            usage = Usage(
                prompt_tokens=meta.prompt_token_count or 0,
                completion_tokens=meta.candidates_token_count or 0,
                total_tokens=meta.total_token_count or 0,
            )
        return Response(content=raw.text, provider=self._config.name, model=self._config.model, usage=usage)
