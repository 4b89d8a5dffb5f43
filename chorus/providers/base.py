"""Abstract base for all AI model providers."""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

from chorus.models import Request, Response, ResponseChunk

FUNCTION_CALLING = "function_calling"
STREAMING = "streaming"
VISION = "vision"
MULTIMODAL = "multimodal"

ChunkHandler = Callable[[ResponseChunk], Awaitable[None] | None]


class ProviderError(Exception):
    """Raised when a provider call fails."""

    def __init__(self, provider_name: str, message: str) -> None:
        self.provider_name = provider_name
        super().__init__(f"[{provider_name}] {message}")


class AIProvider(ABC):
    """Abstract base for all AI model providers."""

    @abstractmethod
    def name(self) -> str:
        """Return the short provider name (e.g. 'gemini', 'claude')."""
        ...

    @abstractmethod
    def model_string(self) -> str:
        """Return the actual model identifier string."""
        ...

    def capabilities(self) -> frozenset[str]:
        """Return the capability tags this provider supports."""
        return frozenset()

    def supports(self, capability: str) -> bool:
        return capability in self.capabilities()

    @abstractmethod
    async def generate(self, request: Request) -> Response:
        """Generate a response for the given request.

        Args:
            request: Prompt plus sampling parameters.

        Returns:
            Response dataclass with content and metadata.

        Raises:
            ProviderError: On API failure, timeout, or invalid response.
        """
        ...

    async def generate_stream(self, request: Request, on_chunk: ChunkHandler) -> Response:
        """Stream a response chunk by chunk.

        Providers without native streaming deliver the whole response as a
        single final chunk.
        """
        response = await self.generate(request)
        result = on_chunk(ResponseChunk(content=response.content, is_final=True))
        if result is not None:
            await result
        return response
