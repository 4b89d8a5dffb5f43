"""Unit tests for chorus/healthcheck.py, no real API calls."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from chorus import healthcheck
from chorus.healthcheck import run_health_checks
from chorus.providers.base import ProviderError
from tests.conftest import MockProvider, failing_provider


async def test_all_providers_pass():
    providers = {"claude": MockProvider("claude"), "gemini": MockProvider("gemini")}

    results = await run_health_checks(providers)

    assert results == {"claude": (True, ""), "gemini": (True, "")}
    request = providers["claude"].generate.call_args.args[0]
    assert request.max_tokens == 16


async def test_one_provider_fails():
    providers = {"claude": MockProvider("claude"), "grok": failing_provider("grok", "403 Forbidden")}

    results = await run_health_checks(providers)

    assert results["claude"] == (True, "")
    ok, err = results["grok"]
    assert ok is False
    assert err == str(ProviderError("grok", "403 Forbidden"))


async def test_empty_providers():
    assert await run_health_checks({}) == {}


async def test_timeout_counts_as_failure(monkeypatch):
    slow = MockProvider("slow")

    async def hang(*args, **kwargs):
        await asyncio.sleep(9999)

    slow.generate = AsyncMock(side_effect=hang)
    monkeypatch.setattr(healthcheck, "_TIMEOUT_SEC", 0.05)

    ok, err = (await run_health_checks({"slow": slow}))["slow"]

    assert ok is False
    assert "no response within" in err


@pytest.mark.parametrize("count", [1, 3])
async def test_every_provider_reported(count):
    providers = {f"p{i}": MockProvider(f"p{i}") for i in range(count)}
    assert sorted(await run_health_checks(providers)) == sorted(providers)
