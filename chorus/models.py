"""Pure dataclasses for requests and responses flowing through pipelines. No logic, no deps."""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class FunctionCall:
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Request:
    prompt: str
    temperature: float | None = None         # None = provider default; 0.0 is honoured
    max_tokens: int | None = None            # None = provider default
    stream: bool = False
    function_registry: Any = None
    function_executor: Any = None
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass
class Response:
    content: str
    provider: str = ""
    model: str = ""
    usage: Usage | None = None
    function_call: FunctionCall | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ProviderResponse:
    provider_name: str
    content: str


@dataclass
class ResponseChunk:
    content: str
    is_final: bool = False
