"""JSON-backed store of named pipeline configs.

The whole document is read into memory, mutated, and written back in full on
every change. Writes go through a temp file and os.replace, so readers never see
a half-written file, but two processes writing at once can still overwrite each
other's changes. The store is meant for single-process, interactive use.
"""

import json
import logging
import os
import threading
from datetime import datetime
from pathlib import Path

from chorus.errors import ConfigurationError
from chorus.pipelines.config import PipelineConfig, PipelineType

logger = logging.getLogger(__name__)

DEFAULT_STORE_PATH = Path.home() / ".chorus" / "pipelines.json"


def _parse_document(text: str, source: Path) -> dict[str, PipelineConfig]:
    if not text.strip():
        return {}
    try:
        raw = json.loads(text)
    except ValueError as exc:
        raise ConfigurationError(f"failed to parse config file {source}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigurationError(f"config file {source} must contain a JSON object")

    configs: dict[str, PipelineConfig] = {}
    for name, data in raw.items():
        config = PipelineConfig.from_dict(data)
        config.name = name
        try:
            config.validate()
        except ConfigurationError as exc:
            raise ConfigurationError(f"invalid config '{name}' in {source}: {exc}") from exc
        configs[name] = config
    return configs


class ConfigStore:
    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path).expanduser() if path else DEFAULT_STORE_PATH
        self._lock = threading.RLock()
        self._configs: dict[str, PipelineConfig] | None = None

    def load(self) -> None:
        """(Re)read the document from disk. A missing or empty file is an empty store.

        Raises:
            ConfigurationError: If the file is malformed or holds an invalid config.
        """
        with self._lock:
            if not self.path.exists():
                self._configs = {}
                return
            self._configs = _parse_document(self.path.read_text(encoding="utf-8"), self.path)
            logger.debug("Loaded %d pipeline configs from %s", len(self._configs), self.path)

    def _loaded(self) -> dict[str, PipelineConfig]:
        if self._configs is None:
            self.load()
        return self._configs

    def _write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        document = {name: config.to_dict() for name, config in self._loaded().items()}
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            tmp_path.write_text(json.dumps(document, indent=2, sort_keys=True) + "\n", encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise

    def save(self, config: PipelineConfig) -> None:
        """Validate config and add or replace it under its name."""
        config.validate()
        with self._lock:
            self._loaded()[config.name] = config.clone()
            self._write()
        logger.info("Saved pipeline config '%s' to %s", config.name, self.path)

    def get(self, name: str) -> PipelineConfig:
        """Return a copy of the named config.

        Raises:
            ConfigurationError: If no config has that name.
        """
        with self._lock:
            config = self._loaded().get(name)
            if config is None:
                raise ConfigurationError(f"pipeline config '{name}' not found")
            return config.clone()

    def delete(self, name: str) -> None:
        with self._lock:
            configs = self._loaded()
            if name not in configs:
                raise ConfigurationError(f"pipeline config '{name}' not found")
            del configs[name]
            self._write()
        logger.info("Deleted pipeline config '%s'", name)

    def list_names(self) -> list[str]:
        """Stored config names, sorted."""
        with self._lock:
            return sorted(self._loaded())

    def list_configs(self) -> list[PipelineConfig]:
        with self._lock:
            configs = self._loaded()
            return [configs[name].clone() for name in sorted(configs)]

    def exists(self, name: str) -> bool:
        with self._lock:
            return name in self._loaded()

    def export(self, name: str) -> str:
        return self.get(name).to_json()

    def import_(self, data: str | bytes) -> PipelineConfig:
        """Parse one exported config, save it, and return it."""
        config = PipelineConfig.from_json(data)
        self.save(config)
        return config

    def clear(self) -> None:
        with self._lock:
            self._configs = {}
            self._write()

    def backup(self) -> Path | None:
        """Copy the current file next to itself with a timestamp suffix.

        Returns the backup path, or None when there is no file yet.
        """
        with self._lock:
            if not self.path.exists():
                return None
            stamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
            backup_path = self.path.with_name(f"{self.path.name}.backup.{stamp}")
            backup_path.write_bytes(self.path.read_bytes())
        logger.info("Backed up pipeline configs to %s", backup_path)
        return backup_path

    def restore(self, backup_path: str | Path) -> None:
        """Replace the store's contents with a backup file, after validating every entry."""
        backup_path = Path(backup_path)
        try:
            text = backup_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigurationError(f"failed to read backup file {backup_path}: {exc}") from exc
        configs = _parse_document(text, backup_path)
        with self._lock:
            self._configs = configs
            self._write()
        logger.info("Restored %d pipeline configs from %s", len(configs), backup_path)

    def filter_by_type(self, pipeline_type: PipelineType) -> list[PipelineConfig]:
        return [c for c in self.list_configs() if c.type == pipeline_type]

    def filter_by_provider(self, provider: str) -> list[PipelineConfig]:
        return [c for c in self.list_configs() if provider in c.get_providers()]

    list = list_names
