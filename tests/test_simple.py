"""Tests for chorus/pipelines/simple.py and the shared plumbing in chorus/pipelines/base.py."""

import asyncio
import logging
import time
from unittest.mock import AsyncMock

import pytest

from chorus.errors import PipelineError
from chorus.models import Request
from chorus.pipelines.base import (
    PipelineOptions,
    PipelineProvider,
    build_options,
    generate_with_retries,
    with_cache,
    with_fallback,
    with_retries,
)
from chorus.pipelines.simple import SimplePipeline
from chorus.providers.base import ProviderError
from tests.conftest import MockProvider, failing_provider, make_response


def test_build_options_defaults():
    options = build_options(())
    assert options == PipelineOptions(max_retries=1, cache=False, cache_ttl=0, fallback_provider=None)


def test_build_options_does_not_touch_base():
    base = build_options([with_retries(2)])
    derived = build_options([with_cache(60)], base)
    assert base.cache is False
    assert derived.max_retries == 2
    assert derived.cache_ttl == 60


async def test_retries_until_success(caplog):
    provider = MockProvider("flaky")
    provider.generate = AsyncMock(side_effect=[ProviderError("flaky", "503"), make_response("ok", "flaky")])

    with caplog.at_level(logging.WARNING):
        response = await generate_with_retries(provider, Request(prompt="hi"), max_retries=3)

    assert response.content == "ok"
    assert provider.generate.call_count == 2
    assert "attempt 1/3" in caplog.text


async def test_retries_are_bounded_and_reraise_last_error():
    provider = failing_provider("down", "still down")
    with pytest.raises(ProviderError, match="still down"):
        await generate_with_retries(provider, Request(prompt="hi"), max_retries=3)
    assert provider.generate.call_count == 3


async def test_default_is_a_single_attempt():
    provider = failing_provider("down")
    with pytest.raises(ProviderError):
        await generate_with_retries(provider, Request(prompt="hi"), max_retries=1)
    assert provider.generate.call_count == 1


async def test_cancellation_is_not_retried():
    provider = MockProvider("slow")
    provider.generate = AsyncMock(side_effect=asyncio.CancelledError())
    with pytest.raises(asyncio.CancelledError):
        await generate_with_retries(provider, Request(prompt="hi"), max_retries=5)
    assert provider.generate.call_count == 1


async def test_simple_pipeline_execute_returns_text(mock_provider):
    pipeline = SimplePipeline(mock_provider)
    assert await pipeline.execute("hello") == "Mock response"
    assert mock_provider.generate.call_args.args[0] == Request(prompt="hello")


async def test_simple_pipeline_wraps_failure_with_provider_name():
    pipeline = SimplePipeline(failing_provider("claude", "auth failed"))
    with pytest.raises(PipelineError, match="provider claude failed") as exc_info:
        await pipeline.execute("hello")
    assert exc_info.value.provider == "claude"
    assert isinstance(exc_info.value.__cause__, ProviderError)


async def test_simple_pipeline_uses_fallback_after_retries():
    primary = failing_provider("primary")
    backup = MockProvider("backup", "from backup")
    pipeline = SimplePipeline(primary, with_retries(2), with_fallback(backup))

    assert await pipeline.execute("hello") == "from backup"
    assert primary.generate.call_count == 2
    backup.generate.assert_awaited_once()


async def test_simple_pipeline_cache_hits_skip_provider(mock_provider):
    pipeline = SimplePipeline(mock_provider, with_cache(300))
    first = await pipeline.execute_with_request(Request(prompt="hello"))
    second = await pipeline.execute_with_request(Request(prompt="hello"))

    assert mock_provider.generate.call_count == 1
    assert "cached" not in first.metadata
    assert second.metadata["cached"] is True


async def test_simple_pipeline_cache_drops_expired_entries_on_insert(mock_provider):
    pipeline = SimplePipeline(mock_provider, with_cache(60))
    await pipeline.execute_with_request(Request(prompt="first"))
    await pipeline.execute_with_request(Request(prompt="second"))
    assert len(pipeline._cache) == 2

    # Age both entries past their ttl
    for key, (_, response) in list(pipeline._cache.items()):
        pipeline._cache[key] = (time.monotonic() - 1, response)
    await pipeline.execute_with_request(Request(prompt="third"))

    assert list(pipeline._cache) == [("third", None, None)]
    assert mock_provider.generate.call_count == 3


async def test_with_options_returns_copy(mock_provider):
    original = SimplePipeline(mock_provider)
    tuned = original.with_options(with_retries(4))
    assert tuned is not original
    assert tuned.options.max_retries == 4
    assert original.options.max_retries == 1


async def test_pipeline_provider_fills_in_name(mock_provider):
    wrapped = PipelineProvider(SimplePipeline(mock_provider), name="inner")
    response = await wrapped.generate(Request(prompt="x"))
    assert wrapped.name() == "inner"
    assert wrapped.model_string() == "pipeline"
    assert response.content == "Mock response"
    assert response.provider == "mock"
