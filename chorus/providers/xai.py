"""xAI Grok provider using openai SDK (OpenAI-compatible API)."""

from openai import AsyncOpenAI

from chorus.providers.base import FUNCTION_CALLING
from chorus.providers.openai_provider import OpenAIProvider


class XAIProvider(OpenAIProvider):
    """Grok through the OpenAI-compatible endpoint in base_url.

    Request and response mapping is OpenAIProvider's; only the client differs.
    """

    def _make_client(self, api_key: str) -> AsyncOpenAI:
        if not self._config.base_url:
            raise self._fail("base_url is required for xAI provider")
        return AsyncOpenAI(api_key=api_key, base_url=self._config.base_url)

    def capabilities(self) -> frozenset[str]:
        return frozenset({FUNCTION_CALLING})
