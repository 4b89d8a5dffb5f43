"""Declarative pipeline descriptions and their JSON form.

A PipelineConfig names providers rather than holding them; the factory resolves
the names through a ProviderRegistry when the pipeline is built.
"""

import copy
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from chorus.errors import ConfigurationError
from chorus.pipelines.high_availability import STRATEGIES as HA_STRATEGIES

logger = logging.getLogger(__name__)


class PipelineType(str, Enum):
    SIMPLE = "simple"
    SERIAL = "serial"
    PARALLEL = "parallel"
    COLLABORATIVE = "collaborative"
    NESTED = "nested"
    TRANSFORM = "transform"
    HIGH_AVAILABILITY = "high_availability"
    CONSENSUS = "consensus"


class CombinerType(str, Enum):
    CONCAT = "concat"
    MAJORITY_VOTE = "majority_vote"
    FIRST_SUCCESSFUL = "first_successful"
    LONGEST = "longest"
    ROUND_ROBIN = "round_robin"
    RANDOM = "random"
    CONSENSUS = "consensus"
    WEIGHTED = "weighted"
    QUALITY_SCORE = "quality_score"
    BEST_PICKER = "best_picker"
    JURY = "jury"


def _normalize(value: str) -> str:
    return value.strip().lower().replace("-", "_")


def parse_pipeline_type(value: str) -> PipelineType:
    """Parse a pipeline type name. Dashes are accepted, and "ha" is short for high_availability."""
    normalized = _normalize(value)
    if normalized == "ha":
        return PipelineType.HIGH_AVAILABILITY
    try:
        return PipelineType(normalized)
    except ValueError:
        raise ConfigurationError(f"unknown pipeline type: {value}") from None


def parse_combiner_type(value: str) -> CombinerType:
    try:
        return CombinerType(_normalize(value))
    except ValueError:
        raise ConfigurationError(f"unknown combiner type: {value}") from None


def _compact(data: dict[str, Any]) -> dict[str, Any]:
    """Drop empty values so the stored JSON stays small and readable."""
    return {k: v for k, v in data.items() if v not in (None, "", [], {}, 0)}


@dataclass
class CombinerConfig:
    separator: str = ""                       # concat
    min_length: int = 0                       # quality_score
    picker_provider: str = ""                 # best_picker
    judge_provider: str = ""                  # consensus
    weights: dict[str, float] = field(default_factory=dict)   # weighted

    def to_dict(self) -> dict[str, Any]:
        return _compact({
            "separator": self.separator,
            "min_length": self.min_length,
            "picker_provider": self.picker_provider,
            "judge_provider": self.judge_provider,
            "weights": dict(self.weights),
        })

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CombinerConfig":
        data = data or {}
        return cls(
            separator=data.get("separator", ""),
            # older files call the quality threshold max_tokens
            min_length=int(data.get("min_length") or data.get("max_tokens") or 0),
            picker_provider=data.get("picker_provider", ""),
            judge_provider=data.get("judge_provider", ""),
            weights={k: float(v) for k, v in (data.get("weights") or {}).items()},
        )


@dataclass
class TransformConfig:
    type: str                                 # transform kind, e.g. "prefix", "template"
    name: str = ""
    config: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "name": self.name, "config": dict(self.config)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TransformConfig":
        return cls(type=data.get("type", ""), name=data.get("name", ""), config=dict(data.get("config") or {}))


@dataclass
class PipelineStageConfig:
    name: str
    type: PipelineType
    config: "PipelineConfig"

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "type": self.type.value, "config": self.config.to_dict()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PipelineStageConfig":
        stage_type = parse_pipeline_type(data.get("type", ""))
        inner = dict(data.get("config") or {})
        inner.setdefault("name", data.get("name", ""))
        inner.setdefault("type", stage_type.value)
        return cls(name=data.get("name", ""), type=stage_type, config=PipelineConfig.from_dict(inner))

    def resolved(self) -> "PipelineConfig":
        """The embedded config with the stage's own name and type applied."""
        resolved = self.config.clone()
        resolved.name = self.name or resolved.name
        resolved.type = self.type
        return resolved


@dataclass
class PipelineConfig:
    name: str
    type: PipelineType | None
    description: str = ""
    version: str = ""

    provider: str = ""                        # simple
    providers: list[str] = field(default_factory=list)
    rounds: int = 0                           # collaborative; 0 means the default

    combiner: str = ""                        # parallel
    combiner_config: CombinerConfig = field(default_factory=CombinerConfig)
    separator: str = ""
    judge: str = ""
    jurors: list[str] = field(default_factory=list)
    voting: str = ""

    stages: list[PipelineStageConfig] = field(default_factory=list)            # nested

    base_config: "PipelineConfig | None" = None                                # transform
    input_transform: TransformConfig | None = None
    output_transform: TransformConfig | None = None

    ha_strategy: str = ""                     # high_availability: fallback or race

    options: dict[str, Any] = field(default_factory=dict)
    provider_configs: dict[str, dict[str, Any]] = field(default_factory=dict)

    def validate(self) -> None:
        """Check the fields required by the declared type.

        Raises:
            ConfigurationError: Listing every problem found, e.g.
                "simple pipeline requires provider".
        """
        problems = self._problems()
        if problems:
            raise ConfigurationError(f"invalid pipeline config '{self.name}': {'; '.join(problems)}")

    def _problems(self) -> list[str]:
        problems: list[str] = []
        if not self.name:
            problems.append("name is required")
        if self.type is None:
            problems.append("type is required")
            return problems

        kind = self.type.value
        if self.type == PipelineType.SIMPLE and not self.provider:
            problems.append("simple pipeline requires provider")
        if self.type in (
            PipelineType.SERIAL,
            PipelineType.PARALLEL,
            PipelineType.COLLABORATIVE,
            PipelineType.HIGH_AVAILABILITY,
        ) and not self.providers:
            problems.append(f"{kind} pipeline requires at least one entry in providers")
        if self.type == PipelineType.NESTED:
            if not self.stages:
                problems.append("nested pipeline requires at least one entry in stages")
            for index, stage in enumerate(self.stages, start=1):
                problems.extend(f"stage {index}: {p}" for p in stage.resolved()._problems())
        if self.type == PipelineType.TRANSFORM:
            if self.base_config is None:
                problems.append("transform pipeline requires base_config")
            else:
                problems.extend(f"base_config: {p}" for p in self.base_config._problems())
        if self.type == PipelineType.CONSENSUS:
            if len(self.providers) < 2:
                problems.append("consensus pipeline requires at least two entries in providers")
            if not self.judge_provider():
                problems.append("consensus pipeline requires combiner_config.judge_provider")
        if self.type == PipelineType.HIGH_AVAILABILITY and self.ha_strategy and self.ha_strategy not in HA_STRATEGIES:
            problems.append(f"unknown ha_strategy '{self.ha_strategy}'")

        if self.type == PipelineType.PARALLEL and self.combiner:
            problems.extend(self._combiner_problems())
        return problems

    def _combiner_problems(self) -> list[str]:
        try:
            combiner = parse_combiner_type(self.combiner)
        except ConfigurationError as exc:
            return [str(exc)]
        if combiner in (CombinerType.BEST_PICKER, CombinerType.CONSENSUS) and not self.judge_provider():
            return [f"{combiner.value} combiner requires combiner_config.judge_provider"]
        if combiner == CombinerType.JURY and not self.jurors:
            return ["jury combiner requires jurors"]
        return []

    def judge_provider(self) -> str:
        cc = self.combiner_config
        return cc.judge_provider or cc.picker_provider or self.judge

    def combiner_settings(self) -> dict[str, Any]:
        """Flatten combiner-related fields into the settings dict combiner builders read."""
        cc = self.combiner_config
        return {
            "separator": cc.separator or self.separator,
            "min_length": cc.min_length,
            "judge": self.judge_provider(),
            "weights": dict(cc.weights),
            "jurors": list(self.jurors),
            "voting": self.voting,
        }

    def get_providers(self) -> list[str]:
        """Every provider name this config refers to, including stages and the base config, sorted."""
        names = set(self.providers) | set(self.jurors)
        names.update(n for n in (self.provider, self.judge_provider()) if n)
        fallback = self.options.get("fallback")
        if fallback:
            names.add(fallback)
        for stage in self.stages:
            names.update(stage.config.get_providers())
        if self.base_config is not None:
            names.update(self.base_config.get_providers())
        return sorted(names)

    def clone(self) -> "PipelineConfig":
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        data = _compact({
            "description": self.description,
            "version": self.version,
            "provider": self.provider,
            "providers": list(self.providers),
            "rounds": self.rounds,
            "combiner": self.combiner,
            "combiner_config": self.combiner_config.to_dict(),
            "separator": self.separator,
            "judge": self.judge,
            "jurors": list(self.jurors),
            "voting": self.voting,
            "stages": [s.to_dict() for s in self.stages],
            "base_config": self.base_config.to_dict() if self.base_config else None,
            "input_transform": self.input_transform.to_dict() if self.input_transform else None,
            "output_transform": self.output_transform.to_dict() if self.output_transform else None,
            "ha_strategy": self.ha_strategy,
            "options": dict(self.options),
            "provider_configs": copy.deepcopy(self.provider_configs),
        })
        data["name"] = self.name
        data["type"] = self.type.value if self.type else ""
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PipelineConfig":
        """Build a config from its dict form. Does not validate.

        Raises:
            ConfigurationError: If data is not a mapping or names an unknown type.
        """
        if not isinstance(data, dict):
            raise ConfigurationError(f"pipeline config must be a JSON object, got {type(data).__name__}")
        raw_type = data.get("type") or ""
        base = data.get("base_config")
        input_transform = data.get("input_transform")
        output_transform = data.get("output_transform")
        return cls(
            name=data.get("name", ""),
            type=parse_pipeline_type(raw_type) if raw_type else None,
            description=data.get("description", ""),
            version=data.get("version", ""),
            provider=data.get("provider", ""),
            providers=list(data.get("providers") or []),
            rounds=int(data.get("rounds") or 0),
            combiner=data.get("combiner", ""),
            combiner_config=CombinerConfig.from_dict(data.get("combiner_config")),
            separator=data.get("separator", ""),
            judge=data.get("judge", ""),
            jurors=list(data.get("jurors") or []),
            voting=data.get("voting", ""),
            stages=[PipelineStageConfig.from_dict(s) for s in data.get("stages") or []],
            base_config=cls.from_dict(base) if base else None,
            input_transform=TransformConfig.from_dict(input_transform) if input_transform else None,
            output_transform=TransformConfig.from_dict(output_transform) if output_transform else None,
            ha_strategy=data.get("ha_strategy", ""),
            options=dict(data.get("options") or {}),
            provider_configs={k: dict(v) for k, v in (data.get("provider_configs") or {}).items()},
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, sort_keys=True)

    @classmethod
    def from_json(cls, text: str | bytes) -> "PipelineConfig":
        """Parse and validate a single config.

        Raises:
            ConfigurationError: On malformed JSON or an invalid config.
        """
        try:
            data = json.loads(text)
        except ValueError as exc:
            raise ConfigurationError(f"failed to parse pipeline config: {exc}") from exc
        config = cls.from_dict(data)
        config.validate()
        return config
