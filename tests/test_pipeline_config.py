"""Tests for chorus/pipelines/config.py."""

import json

import pytest

from chorus.errors import ConfigurationError
from chorus.pipelines.config import (
    CombinerConfig,
    CombinerType,
    PipelineConfig,
    PipelineStageConfig,
    PipelineType,
    TransformConfig,
    parse_combiner_type,
    parse_pipeline_type,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("serial", PipelineType.SERIAL),
        ("Parallel", PipelineType.PARALLEL),
        ("ha", PipelineType.HIGH_AVAILABILITY),
        ("high-availability", PipelineType.HIGH_AVAILABILITY),
        ("collaborative", PipelineType.COLLABORATIVE),
    ],
)
def test_parse_pipeline_type(raw, expected):
    assert parse_pipeline_type(raw) == expected


def test_parse_pipeline_type_unknown():
    with pytest.raises(ConfigurationError, match="unknown pipeline type: mesh"):
        parse_pipeline_type("mesh")


def test_parse_combiner_type_accepts_dashes():
    assert parse_combiner_type("majority-vote") == CombinerType.MAJORITY_VOTE


def test_simple_without_provider_names_missing_field():
    config = PipelineConfig(name="solo", type=PipelineType.SIMPLE)
    with pytest.raises(ConfigurationError, match="simple pipeline requires provider"):
        config.validate()


@pytest.mark.parametrize(
    "kind, message",
    [
        (PipelineType.SERIAL, "serial pipeline requires at least one entry in providers"),
        (PipelineType.PARALLEL, "parallel pipeline requires at least one entry in providers"),
        (PipelineType.HIGH_AVAILABILITY, "high_availability pipeline requires at least one entry in providers"),
        (PipelineType.NESTED, "nested pipeline requires at least one entry in stages"),
        (PipelineType.TRANSFORM, "transform pipeline requires base_config"),
    ],
)
def test_type_specific_required_fields(kind, message):
    with pytest.raises(ConfigurationError, match=message):
        PipelineConfig(name="p", type=kind).validate()


def test_validate_collects_every_problem():
    config = PipelineConfig(name="", type=PipelineType.CONSENSUS, providers=["a"])
    with pytest.raises(ConfigurationError) as exc_info:
        config.validate()
    message = str(exc_info.value)
    assert "name is required" in message
    assert "at least two entries in providers" in message
    assert "judge_provider" in message


def test_parallel_best_picker_requires_judge():
    config = PipelineConfig(name="p", type=PipelineType.PARALLEL, providers=["a", "b"], combiner="best_picker")
    with pytest.raises(ConfigurationError, match="best_picker combiner requires"):
        config.validate()


def test_parallel_rejects_unknown_combiner():
    config = PipelineConfig(name="p", type=PipelineType.PARALLEL, providers=["a"], combiner="loudest")
    with pytest.raises(ConfigurationError, match="unknown combiner type: loudest"):
        config.validate()


def test_nested_stage_problems_are_prefixed():
    stage = PipelineStageConfig(name="draft", type=PipelineType.SIMPLE, config=PipelineConfig(name="", type=None))
    config = PipelineConfig(name="n", type=PipelineType.NESTED, stages=[stage])
    with pytest.raises(ConfigurationError, match="stage 1: simple pipeline requires provider"):
        config.validate()


def _full_config() -> PipelineConfig:
    return PipelineConfig(
        name="review",
        type=PipelineType.NESTED,
        description="draft then review",
        version="1",
        stages=[
            PipelineStageConfig(
                name="draft",
                type=PipelineType.PARALLEL,
                config=PipelineConfig(
                    name="draft",
                    type=PipelineType.PARALLEL,
                    providers=["openai", "gemini"],
                    combiner="weighted",
                    combiner_config=CombinerConfig(weights={"gemini": 2.0}),
                ),
            ),
            PipelineStageConfig(
                name="polish",
                type=PipelineType.TRANSFORM,
                config=PipelineConfig(
                    name="polish",
                    type=PipelineType.TRANSFORM,
                    base_config=PipelineConfig(name="base", type=PipelineType.SIMPLE, provider="claude"),
                    input_transform=TransformConfig(type="prefix", config={"prefix": "Polish: "}),
                ),
            ),
        ],
        options={"max_retries": 2},
        provider_configs={"claude": {"temperature": 0.2}},
    )


def test_json_round_trip_preserves_config():
    config = _full_config()
    restored = PipelineConfig.from_json(config.to_json())
    assert restored == config


def test_to_dict_omits_empty_fields():
    data = PipelineConfig(name="solo", type=PipelineType.SIMPLE, provider="claude").to_dict()
    assert data == {"name": "solo", "type": "simple", "provider": "claude"}


def test_from_dict_accepts_legacy_max_tokens_for_quality_threshold():
    cc = CombinerConfig.from_dict({"max_tokens": 120})
    assert cc.min_length == 120


def test_from_json_rejects_invalid_json():
    with pytest.raises(ConfigurationError, match="failed to parse pipeline config"):
        PipelineConfig.from_json("{not json")


def test_from_json_validates():
    with pytest.raises(ConfigurationError, match="simple pipeline requires provider"):
        PipelineConfig.from_json(json.dumps({"name": "x", "type": "simple"}))


def test_get_providers_walks_stages_and_base():
    assert _full_config().get_providers() == ["claude", "gemini", "openai"]


def test_clone_is_deep():
    config = _full_config()
    clone = config.clone()
    clone.stages[0].config.providers.append("grok")
    assert "grok" not in config.stages[0].config.providers


def test_combiner_settings_merge_legacy_fields():
    config = PipelineConfig(
        name="p",
        type=PipelineType.PARALLEL,
        providers=["a"],
        combiner="jury",
        separator="--",
        judge="claude",
        jurors=["x", "y"],
        voting="consensus",
    )
    settings = config.combiner_settings()
    assert settings["separator"] == "--"
    assert settings["judge"] == "claude"
    assert settings["jurors"] == ["x", "y"]
    assert settings["voting"] == "consensus"
