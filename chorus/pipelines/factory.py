"""Build live pipelines from provider names or from stored PipelineConfigs.

Every provider is created through the ProviderRegistry handed to the factory, so
an unknown provider name fails while the pipeline is being built, never during
execution. There is no module-level default factory; callers construct one.
"""

import logging
from typing import Any

from chorus.errors import ConfigurationError
from chorus.pipelines.adapters import FunctionAdapter, ProcessFunc, Transform, TransformAdapter, build_transform
from chorus.pipelines.base import Option, Pipeline, with_cache, with_fallback, with_retries
from chorus.pipelines.collaborative import CollaborativePipeline
from chorus.pipelines.combiners import (
    ConsensusCombiner,
    ResultCombiner,
    RoundRobinCombiner,
    build_combiner,
)
from chorus.pipelines.config import PipelineConfig, PipelineType, TransformConfig
from chorus.pipelines.high_availability import FALLBACK, HighAvailabilityPipeline
from chorus.pipelines.nested import NestedPipeline
from chorus.pipelines.parallel import ParallelPipeline
from chorus.pipelines.serial import SerialPipeline
from chorus.pipelines.simple import SimplePipeline
from chorus.pipelines.store import ConfigStore
from chorus.providers.base import AIProvider
from chorus.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

HA_DEFAULT_RETRIES = 3


class PipelineFactory:
    def __init__(self, registry: ProviderRegistry) -> None:
        self.registry = registry

    def _provider(self, name: str, overrides: dict[str, Any] | None = None) -> AIProvider:
        return self.registry.create_provider(name, overrides)

    def _providers(self, names: list[str], overrides: dict[str, dict[str, Any]] | None = None) -> list[AIProvider]:
        if not names:
            raise ConfigurationError("at least one provider name is required")
        overrides = overrides or {}
        return [self._provider(name, overrides.get(name)) for name in names]

    def create_simple(self, provider_name: str, *opts: Option) -> SimplePipeline:
        return SimplePipeline(self._provider(provider_name), *opts)

    def create_serial(self, provider_names: list[str], *opts: Option) -> SerialPipeline:
        return SerialPipeline(self._providers(provider_names), *opts)

    def create_parallel(
        self, provider_names: list[str], combiner: ResultCombiner | None = None, *opts: Option
    ) -> ParallelPipeline:
        return ParallelPipeline(self._providers(provider_names), combiner, *opts)

    def create_collaborative(self, provider_names: list[str], rounds: int = 0, *opts: Option) -> CollaborativePipeline:
        return CollaborativePipeline(self._providers(provider_names), rounds, *opts)

    def create_fallback(self, primary: str, fallbacks: list[str], *opts: Option) -> HighAvailabilityPipeline:
        """Strict-order failover: primary first, then each fallback in turn."""
        return HighAvailabilityPipeline(self._providers([primary, *fallbacks]), FALLBACK, *opts)

    def create_high_availability(
        self, provider_names: list[str], strategy: str = FALLBACK, *opts: Option
    ) -> HighAvailabilityPipeline:
        return HighAvailabilityPipeline(self._providers(provider_names), strategy, *opts)

    def create_balanced(self, provider_name: str, instances: int, *opts: Option) -> ParallelPipeline:
        """Several instances of one provider behind a round-robin combiner."""
        if instances < 1:
            raise ConfigurationError("balanced pipeline requires at least one instance")
        providers = [self._provider(provider_name) for _ in range(instances)]
        return ParallelPipeline(providers, RoundRobinCombiner(), *opts)

    def create_nested(self, stages: list[Pipeline], *opts: Option) -> NestedPipeline:
        if not stages:
            raise ConfigurationError("nested pipeline requires at least one stage")
        return NestedPipeline(stages, *opts)

    def create_transform(
        self,
        pipeline: Pipeline,
        input_transform: Transform | None = None,
        output_transform: Transform | None = None,
        *opts: Option,
    ) -> TransformAdapter:
        return TransformAdapter(pipeline, input_transform, output_transform, *opts)

    def create_function(self, name: str, fn: ProcessFunc, *opts: Option) -> FunctionAdapter:
        return FunctionAdapter(name, fn, *opts)

    def create_chain(self, provider_name: str, *transforms: ProcessFunc) -> NestedPipeline:
        """A provider call followed by async post-processing steps, as a nested pipeline."""
        stages: list[Pipeline] = [self.create_simple(provider_name)]
        for index, transform in enumerate(transforms, start=1):
            stages.append(FunctionAdapter(f"transform_{index}", transform))
        return NestedPipeline(stages)

    def create_consensus(self, provider_names: list[str], judge: str, *opts: Option) -> ParallelPipeline:
        return ParallelPipeline(self._providers(provider_names), ConsensusCombiner(self._provider(judge)), *opts)


class ConfigFactory(PipelineFactory):
    """PipelineFactory that can also build from, and manage, stored configs."""

    def __init__(self, registry: ProviderRegistry, store: ConfigStore) -> None:
        super().__init__(registry)
        self.store = store

    def create_from_config(self, name: str) -> Pipeline:
        return self.create_from_pipeline_config(self.store.get(name))

    def create_from_pipeline_config(self, config: PipelineConfig) -> Pipeline:
        """Validate config and build the pipeline it describes.

        Raises:
            ConfigurationError: For a missing required field, an unknown provider,
                combiner, transform or HA strategy, or a malformed option.
        """
        config.validate()
        logger.debug("Building %s pipeline '%s'", config.type.value, config.name)

        overrides = config.provider_configs
        opts = self._options(config)

        def resolve(name: str) -> AIProvider:
            return self._provider(name, overrides.get(name))

        kind = config.type
        if kind == PipelineType.SIMPLE:
            return SimplePipeline(resolve(config.provider), *opts)
        if kind == PipelineType.SERIAL:
            return SerialPipeline(self._providers(config.providers, overrides), *opts)
        if kind == PipelineType.PARALLEL:
            combiner = build_combiner(config.combiner or "concat", config.combiner_settings(), resolve)
            return ParallelPipeline(self._providers(config.providers, overrides), combiner, *opts)
        if kind == PipelineType.COLLABORATIVE:
            return CollaborativePipeline(self._providers(config.providers, overrides), config.rounds, *opts)
        if kind == PipelineType.NESTED:
            stages = []
            for index, stage in enumerate(config.stages, start=1):
                try:
                    stages.append(self.create_from_pipeline_config(stage.resolved()))
                except ConfigurationError as exc:
                    raise ConfigurationError(f"failed to create stage {index} ('{stage.name}'): {exc}") from exc
            return NestedPipeline(stages, *opts)
        if kind == PipelineType.TRANSFORM:
            try:
                base = self.create_from_pipeline_config(config.base_config)
            except ConfigurationError as exc:
                raise ConfigurationError(f"failed to create base pipeline: {exc}") from exc
            return TransformAdapter(
                base,
                self._transform(config.input_transform),
                self._transform(config.output_transform),
                *opts,
            )
        if kind == PipelineType.HIGH_AVAILABILITY:
            ha_opts = [with_retries(HA_DEFAULT_RETRIES), *opts]
            return HighAvailabilityPipeline(
                self._providers(config.providers, overrides), config.ha_strategy or FALLBACK, *ha_opts
            )
        if kind == PipelineType.CONSENSUS:
            combiner = ConsensusCombiner(resolve(config.judge_provider()))
            return ParallelPipeline(self._providers(config.providers, overrides), combiner, *opts)
        raise ConfigurationError(f"unsupported pipeline type: {kind}")

    @staticmethod
    def _transform(spec: TransformConfig | None) -> Transform | None:
        if spec is None:
            return None
        return build_transform(spec.type, spec.config)

    def _options(self, config: PipelineConfig) -> list[Option]:
        options = config.options
        opts: list[Option] = []

        retries = options.get("max_retries", options.get("retries"))
        if retries is not None:
            if isinstance(retries, bool) or not isinstance(retries, (int, float)) or retries < 1:
                raise ConfigurationError(f"option max_retries must be a positive integer, got {retries!r}")
            opts.append(with_retries(int(retries)))

        cache = options.get("cache")
        if cache:
            if isinstance(cache, bool) or not isinstance(cache, (int, float)):
                raise ConfigurationError(f"option cache must be a TTL in seconds, got {cache!r}")
            opts.append(with_cache(int(cache)))

        fallback = options.get("fallback")
        if fallback:
            opts.append(with_fallback(self._provider(fallback, config.provider_configs.get(fallback))))

        unknown = set(options) - {"max_retries", "retries", "cache", "fallback"}
        if unknown:
            logger.warning("Ignoring unknown options for '%s': %s", config.name, ", ".join(sorted(unknown)))
        return opts

    def save_config(self, config: PipelineConfig) -> None:
        self.store.save(config)

    def load_config(self, name: str) -> PipelineConfig:
        return self.store.get(name)

    def delete_config(self, name: str) -> None:
        self.store.delete(name)

    def list_configs(self) -> list[PipelineConfig]:
        return self.store.list_configs()

    def export_config(self, name: str) -> str:
        return self.store.export(name)

    def import_config(self, data: str | bytes) -> PipelineConfig:
        return self.store.import_(data)
