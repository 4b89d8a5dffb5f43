"""Tests for chorus/pipelines/nested.py."""

import pytest

from chorus.errors import PipelineError
from chorus.models import Request
from chorus.pipelines.base import PipelineProvider
from chorus.pipelines.collaborative import CollaborativePipeline
from chorus.pipelines.nested import NestedPipeline
from chorus.pipelines.parallel import ParallelPipeline
from chorus.pipelines.serial import SerialPipeline
from chorus.pipelines.simple import SimplePipeline
from tests.conftest import EchoProvider, MockProvider, failing_provider


async def test_zero_stages_fails_without_calling_anything(mock_provider):
    pipeline = NestedPipeline([])
    with pytest.raises(PipelineError, match="needs at least one stage"):
        await pipeline.execute("x")
    mock_provider.generate.assert_not_called()


async def test_stages_chain_like_serial():
    pipeline = NestedPipeline([SimplePipeline(EchoProvider("a")), SerialPipeline([EchoProvider("b"), EchoProvider("c")])])
    assert await pipeline.execute("x") == "c(b(a(x)))"


async def test_stage_can_be_parallel():
    fan_out = ParallelPipeline([MockProvider("p1", "one"), MockProvider("p2", "two")])
    editor = EchoProvider("editor")
    pipeline = NestedPipeline([fan_out, SimplePipeline(editor)])

    response = await pipeline.execute_with_request(Request(prompt="x"))

    assert response.content == "editor(one\n\ntwo)"
    assert response.metadata["pipeline_type"] == "nested"
    assert response.metadata["pipeline_stages"] == 2


async def test_failing_stage_reports_one_based_index():
    pipeline = NestedPipeline([SimplePipeline(EchoProvider("a")), SimplePipeline(failing_provider("b"))])
    with pytest.raises(PipelineError, match="stage 2 failed") as exc_info:
        await pipeline.execute("x")
    assert exc_info.value.stage == 2


async def test_stage_management():
    first = SimplePipeline(EchoProvider("a"))
    second = SimplePipeline(EchoProvider("b"))
    pipeline = NestedPipeline([first]).add_stage(second)

    assert pipeline.stage_count() == 2
    assert pipeline.get_stage(1) is second
    with pytest.raises(IndexError):
        pipeline.get_stage(2)


async def test_with_options_does_not_share_stage_list():
    pipeline = NestedPipeline([SimplePipeline(EchoProvider("a"))])
    clone = pipeline.with_options()
    clone.add_stage(SimplePipeline(EchoProvider("b")))
    assert pipeline.stage_count() == 1


async def test_pipeline_as_provider_inside_collaborative():
    inner = PipelineProvider(SerialPipeline([EchoProvider("draft"), EchoProvider("polish")]), name="team")
    pipeline = CollaborativePipeline([inner, MockProvider("critic", "looks fine")], rounds=1)
    response = await pipeline.execute_with_request(Request(prompt="topic"))
    assert "team (Round 1): polish(draft(" in response.metadata["full_discussion"]
