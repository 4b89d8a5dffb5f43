"""Inbox folder scanning, front matter parsing and archiving for batch pipeline runs."""

import logging
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import frontmatter

from chorus.models import Request

logger = logging.getLogger(__name__)


@dataclass
class InboxItem:
    path: Path
    prompt: str
    pipeline: str | None          # front matter may pick the pipeline per file
    metadata: dict[str, Any]

    def to_request(self) -> Request:
        """Build the pipeline request, honouring temperature and max_tokens from front matter."""
        temperature = self.metadata.get("temperature")
        max_tokens = self.metadata.get("max_tokens")
        return Request(
            prompt=self.prompt,
            temperature=float(temperature) if temperature is not None else None,
            max_tokens=int(max_tokens) if max_tokens is not None else None,
        )


def ensure_dirs(inbox_dir: Path, archive_dir: Path) -> None:
    inbox_dir.mkdir(parents=True, exist_ok=True)
    archive_dir.mkdir(parents=True, exist_ok=True)


def scan_inbox(inbox_dir: Path) -> list[Path]:
    """Return all .md files in inbox_dir, oldest first."""
    files = list(inbox_dir.glob("*.md"))
    return sorted(files, key=lambda p: p.stat().st_mtime)


def parse_file(file_path: Path) -> InboxItem:
    """Parse a markdown prompt file with optional YAML front matter.

    Recognised front matter keys: pipeline (str), temperature (float), max_tokens (int).
    Other keys are kept in metadata untouched.
    """
    post = frontmatter.load(str(file_path))
    metadata = dict(post.metadata)
    pipeline = metadata.get("pipeline")
    return InboxItem(
        path=file_path,
        prompt=post.content.strip(),
        pipeline=str(pipeline) if pipeline else None,
        metadata=metadata,
    )


def archive_file(file_path: Path, archive_dir: Path, *, failed: bool = False) -> Path:
    """Move file into archive_dir with a timestamp prefix, and "FAILED_" in front when failed."""
    timestamp = datetime.now().strftime("%Y-%m-%dT%H%M")
    prefix = "FAILED_" if failed else ""
    dest = archive_dir / f"{prefix}{timestamp}_{file_path.name}"
    shutil.move(str(file_path), str(dest))
    logger.debug("Archived %s -> %s", file_path.name, dest.name)
    return dest
