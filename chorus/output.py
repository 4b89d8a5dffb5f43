"""Rich console output and markdown transcripts for pipeline results."""

import logging
import re
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from chorus.models import Response
from chorus.pipelines.config import PipelineConfig

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

# Metadata keys shown in the provenance line, in display order
_PROVENANCE_KEYS = (
    "pipeline_type",
    "pipeline_stages",
    "source_count",
    "votes",
    "consensus_ratio",
    "quality_score",
    "selected_weight",
    "selected_index",
    "winning_index",
    "consensus_from",
    "rounds",
    "ha_strategy",
    "failed_providers",
    "summary_failed",
    "cached",
)


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def _format_value(value: object) -> str:
    if isinstance(value, float):
        return f"{value:.2f}"
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return str(value)


def provenance(response: Response) -> str:
    """One-line summary of the metadata a pipeline or combiner recorded."""
    parts = [
        f"{key}: {_format_value(response.metadata[key])}"
        for key in _PROVENANCE_KEYS
        if key in response.metadata
    ]
    if isinstance(response.metadata.get("votes"), list):
        # jury votes are a list of ballots, not a count
        parts = [p for p in parts if not p.startswith("votes:")]
        parts.append(f"votes: {len(response.metadata['votes'])}")
    if response.usage and response.usage.total_tokens:
        parts.append(f"tokens: {response.usage.total_tokens}")
    return " | ".join(parts)


def print_response(response: Response, title: str) -> None:
    """Print the final response as markdown with a provenance line underneath."""
    console.print(Rule(f"[bold green]{title}[/bold green]"))
    source = response.provider or "pipeline"
    if response.model:
        source += f" ({response.model})"
    info = provenance(response)
    console.print(Text(f"From: {source}" + (f" | {info}" if info else ""), style="dim"))
    console.print(Markdown(response.content))


def print_discussion(response: Response) -> None:
    """Print the raw discussion of a collaborative run, when one was recorded."""
    discussion = response.metadata.get("full_discussion")
    if not discussion:
        return
    console.print(Panel(discussion, title="[bold]Discussion[/bold]", border_style="dim"))


def print_pipeline_table(configs: list[PipelineConfig]) -> None:
    table = Table(title="Saved pipelines")
    table.add_column("Name", style="bold cyan")
    table.add_column("Type")
    table.add_column("Providers")
    table.add_column("Description", style="dim")
    for config in configs:
        table.add_row(
            config.name,
            config.type.value if config.type else "",
            ", ".join(config.get_providers()),
            config.description,
        )
    console.print(table)


def print_pipeline_config(config: PipelineConfig) -> None:
    console.print_json(config.to_json())


def save_to_file(
    prompt: str,
    response: Response,
    pipeline_name: str,
    output_dir: Path,
    slug_override: str | None = None,
) -> Path:
    """Save prompt, response and provenance as a markdown file.

    Args:
        prompt: The input the pipeline was run with.
        response: The pipeline's final response.
        pipeline_name: Name shown in the transcript header.
        output_dir: Directory to save the file in.
        slug_override: Filename stem to use instead of one derived from the prompt.

    Returns:
        Path to the saved file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    slug = slug_override if slug_override is not None else _slug(prompt)
    filepath = output_dir / f"{timestamp}_{slug}.md"

    lines: list[str] = [
        f"# {pipeline_name}: {prompt[:80]}",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Pipeline:** {pipeline_name}",
        f"**Provider:** {response.provider or 'pipeline'}",
    ]
    info = provenance(response)
    if info:
        lines.append(f"**Provenance:** {info}")
    lines += [
        "",
        "---",
        "",
        "## Prompt",
        "",
        prompt,
        "",
        "## Response",
        "",
        response.content,
        "",
    ]

    discussion = response.metadata.get("full_discussion")
    if discussion:
        lines += ["## Discussion", "", discussion, ""]

    filepath.write_text("\n".join(lines), encoding="utf-8")
    logger.info("Result saved to: %s", filepath)
    return filepath
