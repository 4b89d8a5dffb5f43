"""Shared pytest fixtures."""

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from chorus.models import Request, Response, Usage
from chorus.pipelines.store import ConfigStore
from chorus.providers.base import AIProvider, ProviderError
from chorus.providers.registry import ProviderRegistry
from config.config_loader import AppConfig, DefaultsConfig, ModelConfig


@pytest.fixture
def sample_model_config() -> ModelConfig:
    return ModelConfig(
        name="test_model",
        sdk="test",
        model="test-model-1",
        api_key_env="TEST_API_KEY",
        timeout_sec=30,
        max_tokens=1024,
        base_url=None,
    )


@pytest.fixture
def sample_defaults_config(tmp_path: Path) -> DefaultsConfig:
    return DefaultsConfig(
        rounds=2,
        max_retries=1,
        pipelines_file=tmp_path / "pipelines.json",
        default_provider="claude",
        output_dir=tmp_path / "output",
        inbox_dir=tmp_path / "inbox",
        archive_dir=tmp_path / "inbox" / "archive",
    )


@pytest.fixture
def sample_app_config(sample_defaults_config: DefaultsConfig) -> AppConfig:
    model_cfg = ModelConfig(
        name="claude",
        sdk="anthropic",
        model="claude-sonnet-4-20250514",
        api_key_env="ANTHROPIC_API_KEY",
        timeout_sec=60,
        max_tokens=4096,
    )
    return AppConfig(
        defaults=sample_defaults_config,
        models={"claude": model_cfg},
        available_providers={"claude"},
    )


@pytest.fixture
def sample_response() -> Response:
    return Response(
        content="Use YAML for human-editable config, JSON for machine interchange.",
        provider="claude",
        model="claude-sonnet-4-20250514",
        usage=Usage(prompt_tokens=20, completion_tokens=22, total_tokens=42),
    )


def make_response(content: str, provider: str = "mock", **metadata) -> Response:
    return Response(content=content, provider=provider, model="mock-model", metadata=dict(metadata))


class MockProvider(AIProvider):
    """Test double AIProvider."""

    def __init__(self, provider_name: str = "mock", response_content: str = "Mock response") -> None:
        self._name = provider_name
        self._response_content = response_content
        # Shadow the class method with an AsyncMock at the instance level.
        # ABC check passes because generate is defined in the class body below.
        self.generate = AsyncMock(  # type: ignore[assignment]
            return_value=Response(
                content=response_content,
                provider=provider_name,
                model="mock-model",
                usage=Usage(prompt_tokens=5, completion_tokens=5, total_tokens=10),
            )
        )

    def name(self) -> str:
        return self._name

    def model_string(self) -> str:
        return "mock-model"

    async def generate(self, request: Request) -> Response:  # type: ignore[override]
        """Default implementation; replaced by AsyncMock in __init__."""
        return Response(content=self._response_content, provider=self._name, model="mock-model")

    def prompts(self) -> list[str]:
        """Prompts this provider was called with, in call order."""
        return [c.args[0].prompt for c in self.generate.call_args_list]


class EchoProvider(MockProvider):
    """Replies with its name and the prompt it received, so chaining is visible."""

    def __init__(self, provider_name: str) -> None:
        super().__init__(provider_name)

        async def echo(request: Request) -> Response:
            return Response(content=f"{provider_name}({request.prompt})", provider=provider_name, model="mock-model")

        self.generate = AsyncMock(side_effect=echo)  # type: ignore[assignment]


def failing_provider(name: str, message: str = "boom") -> MockProvider:
    provider = MockProvider(name)
    provider.generate = AsyncMock(side_effect=ProviderError(name, message))  # type: ignore[assignment]
    return provider


@pytest.fixture
def mock_provider() -> MockProvider:
    return MockProvider()


@pytest.fixture
def two_mock_providers() -> list[MockProvider]:
    return [MockProvider("provider_a", "Response from A"), MockProvider("provider_b", "Response from B")]


@pytest.fixture
def mock_registry() -> tuple[ProviderRegistry, dict[str, MockProvider]]:
    """Registry whose factories hand out fixed MockProviders, plus the providers by name."""
    providers = {name: EchoProvider(name) for name in ("claude", "openai", "gemini")}
    registry = ProviderRegistry()
    for name, provider in providers.items():
        registry.register_factory(name, lambda overrides, _p=provider: _p)
    return registry, providers


@pytest.fixture
def store(tmp_path: Path) -> ConfigStore:
    return ConfigStore(tmp_path / "pipelines.json")
