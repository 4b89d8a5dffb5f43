"""Load settings.yaml into typed dataclasses. Detects API keys at startup."""

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"

# Overrides defaults.pipelines_file when set
PIPELINES_FILE_ENV = "CHORUS_PIPELINES_FILE"


@dataclass
class ModelConfig:
    name: str
    sdk: str
    model: str
    api_key_env: str
    timeout_sec: int
    max_tokens: int
    base_url: str | None = None
    temperature: float = 0.7

    def with_overrides(self, overrides: dict[str, Any] | None) -> "ModelConfig":
        """Return a copy with per-pipeline provider overrides applied.

        Unknown keys are ignored with a warning so a hand-edited pipelines file
        cannot break provider construction.
        """
        if not overrides:
            return self
        known = {f.name for f in dataclasses.fields(self)} - {"name", "sdk", "api_key_env"}
        applied = {}
        for key, value in overrides.items():
            if key in known:
                applied[key] = value
            else:
                logger.warning("Ignoring unknown override '%s' for provider %s", key, self.name)
        return dataclasses.replace(self, **applied)


@dataclass
class DefaultsConfig:
    rounds: int
    max_retries: int
    pipelines_file: Path
    default_provider: str
    output_dir: Path = Path("./output")
    inbox_dir: Path = Path("./inbox")
    archive_dir: Path = Path("./inbox/archive")


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    models: dict[str, ModelConfig]
    available_providers: set[str] = field(default_factory=set)


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing.
    Logs providers whose API key is missing but does not raise; callers check
    available_providers count.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    defaults_raw = raw["defaults"]
    pipelines_file = os.environ.get(PIPELINES_FILE_ENV, "").strip() or defaults_raw["pipelines_file"]
    defaults = DefaultsConfig(
        rounds=int(defaults_raw["rounds"]),
        max_retries=int(defaults_raw.get("max_retries", 1)),
        pipelines_file=Path(pipelines_file).expanduser(),
        default_provider=str(defaults_raw["default_provider"]),
        output_dir=Path(defaults_raw.get("output_dir", "./output")),
        inbox_dir=Path(defaults_raw.get("inbox_dir", "./inbox")),
        archive_dir=Path(defaults_raw.get("archive_dir", "./inbox/archive")),
    )

    models: dict[str, ModelConfig] = {}
    available_providers: set[str] = set()

    for provider_name, model_raw in raw["models"].items():
        model_cfg = ModelConfig(
            name=provider_name,
            sdk=model_raw["sdk"],
            model=model_raw["model"],
            api_key_env=model_raw["api_key_env"],
            timeout_sec=int(model_raw["timeout_sec"]),
            max_tokens=int(model_raw["max_tokens"]),
            base_url=model_raw.get("base_url"),
            temperature=float(model_raw.get("temperature", 0.7)),
        )
        models[provider_name] = model_cfg

        api_key = os.environ.get(model_raw["api_key_env"], "").strip()
        if api_key:
            available_providers.add(provider_name)
            logger.info("Provider available: %s", provider_name)
        else:
            logger.info(
                "Provider skipped (no API key): %s, set %s in .env",
                provider_name,
                model_raw["api_key_env"],
            )

    return AppConfig(
        defaults=defaults,
        models=models,
        available_providers=available_providers,
    )
