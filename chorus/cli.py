"""Click CLI: builds pipelines from flags or saved configs, runs them, and manages the config store."""

import asyncio
import logging
import sys
from dataclasses import dataclass
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from chorus.errors import ChorusError
from chorus.healthcheck import run_health_checks
from chorus.inbox import archive_file, ensure_dirs, parse_file, scan_inbox
from chorus.models import Request, Response
from chorus.output import (
    print_discussion,
    print_pipeline_config,
    print_pipeline_table,
    print_response,
    save_to_file,
)
from chorus.pipelines.base import Pipeline
from chorus.pipelines.config import (
    CombinerConfig,
    PipelineConfig,
    PipelineType,
    parse_combiner_type,
    parse_pipeline_type,
)
from chorus.pipelines.factory import ConfigFactory
from chorus.pipelines.store import ConfigStore
from chorus.providers.base import ProviderError
from chorus.providers.registry import ProviderRegistry, register_builtin_providers
from config.config_loader import AppConfig, load_config

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _split(value: str | None) -> list[str]:
    return [v.strip() for v in value.split(",") if v.strip()] if value else []


def _fail(message: str) -> None:
    console.print(f"[bold red]Error:[/bold red] {escape(message)}")
    sys.exit(1)


def _build_registry(config: AppConfig) -> ProviderRegistry:
    registry = ProviderRegistry()
    register_builtin_providers(registry, config)
    return registry


@dataclass
class CliState:
    config: AppConfig
    store_path: Path
    _factory: ConfigFactory | None = None

    @property
    def factory(self) -> ConfigFactory:
        """The one ConfigFactory for this invocation, built on first use."""
        if self._factory is None:
            self._factory = ConfigFactory(_build_registry(self.config), ConfigStore(self.store_path))
        return self._factory


def _check_providers(state: CliState, names: list[str]) -> None:
    """Ping the providers a pipeline needs; ask before continuing if any fail."""
    registry = state.factory.registry
    providers = {n: registry.create_provider(n) for n in names if registry.is_registered(n)}
    if not providers:
        return

    console.print("\n[bold]Checking providers...[/bold]")
    results = asyncio.run(run_health_checks(providers))

    failed: list[str] = []
    for name in sorted(results):
        ok, err = results[name]
        if ok:
            console.print(f"  [green]OK  [/green] {name}")
        else:
            short_err = err.splitlines()[0][:120] if err else "unknown error"
            console.print(f"  [red]FAIL[/red] {name}: {escape(short_err)}")
            failed.append(name)
    console.print()

    if failed and not click.confirm(f"{len(failed)} provider(s) failed. Continue anyway?", default=False):
        sys.exit(1)


def _execute(pipeline: Pipeline, request: Request, label: str) -> Response:
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        progress.add_task(f"Running {label}...", total=None)
        return asyncio.run(pipeline.execute_with_request(request))


def _run_config(
    state: CliState,
    pipeline_config: PipelineConfig,
    prompt: str,
    *,
    save: bool,
    skip_health_check: bool,
    show_discussion: bool = False,
) -> None:
    try:
        pipeline = state.factory.create_from_pipeline_config(pipeline_config)
        if not skip_health_check:
            _check_providers(state, pipeline_config.get_providers())
        response = _execute(pipeline, Request(prompt=prompt), pipeline_config.name)
    except (ChorusError, ProviderError) as exc:
        _fail(str(exc))
        return

    if show_discussion:
        print_discussion(response)
    print_response(response, pipeline_config.name)
    if save:
        saved = save_to_file(prompt, response, pipeline_config.name, state.config.defaults.output_dir)
        console.print(f"\n[dim]Saved to: {saved}[/dim]")


def _ad_hoc(state: CliState, name: str, kind: PipelineType, retries: int | None, **fields) -> PipelineConfig:
    retries = retries if retries is not None else state.config.defaults.max_retries
    return PipelineConfig(name=name, type=kind, options={"max_retries": retries}, **fields)


def _read_prompt(prompt: str | None, prompt_file: str | None) -> str:
    if prompt_file:
        return Path(prompt_file).read_text(encoding="utf-8").strip()
    if prompt:
        return prompt
    _fail("Provide a PROMPT argument or --file.")
    return ""


def _common_run_options(func):
    func = click.option("--retries", type=int, default=None, help="Attempts per provider call (default: from config)")(func)
    func = click.option("--save/--no-save", default=False, help="Save a markdown transcript to the output directory")(func)
    func = click.option("--skip-health-check", is_flag=True, default=False,
                        help="Skip the API connectivity check before running")(func)
    return func


@click.group()
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.option("--store", "store_path", default=None, type=click.Path(dir_okay=False),
              help="Pipelines file (default: from config or CHORUS_PIPELINES_FILE)")
@click.pass_context
def main(ctx: click.Context, verbose: bool, store_path: str | None) -> None:
    """Chorus -- compose LLM providers into pipelines.

    \b
    Examples:
      chorus ask "Explain CRDTs" --provider claude
      chorus parallel "REST or GraphQL?" -p claude,openai --combiner majority_vote
      chorus collab "Monorepo vs polyrepo?" -p claude,gemini --rounds 2
      chorus pipeline create review --type serial -p openai,claude
      chorus run review --file draft.md
      chorus run review --inbox
    """
    # Model output may contain characters the Windows console code page cannot encode
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config()
    except FileNotFoundError as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    ctx.obj = CliState(
        config=config,
        store_path=Path(store_path) if store_path else config.defaults.pipelines_file,
    )


@main.command()
@click.argument("name")
@click.argument("prompt", required=False)
@click.option("--file", "prompt_file", type=click.Path(exists=True), help="Read the prompt from a file")
@click.option("--inbox", "use_inbox", is_flag=True, default=False, help="Process all .md files in the inbox folder")
@click.option("--inbox-dir", "inbox_dir_override", default=None, help="Override inbox folder path")
@click.option("--save/--no-save", default=False, help="Save a markdown transcript to the output directory")
@click.option("--skip-health-check", is_flag=True, default=False, help="Skip the API connectivity check")
@click.pass_obj
def run(
    state: CliState,
    name: str,
    prompt: str | None,
    prompt_file: str | None,
    use_inbox: bool,
    inbox_dir_override: str | None,
    save: bool,
    skip_health_check: bool,
) -> None:
    """Run the saved pipeline NAME."""
    try:
        pipeline_config = state.factory.load_config(name)
    except ChorusError as exc:
        _fail(str(exc))
        return

    if use_inbox:
        inbox_dir = Path(inbox_dir_override) if inbox_dir_override else state.config.defaults.inbox_dir
        asyncio.run(_run_inbox(state, name, inbox_dir, state.config.defaults.archive_dir))
        return

    _run_config(
        state,
        pipeline_config,
        _read_prompt(prompt, prompt_file),
        save=save,
        skip_health_check=skip_health_check,
        show_discussion=pipeline_config.type == PipelineType.COLLABORATIVE,
    )


async def _run_inbox(state: CliState, default_pipeline: str, inbox_dir: Path, archive_dir: Path) -> None:
    """Run every inbox file through its pipeline (front matter "pipeline" wins over NAME)."""
    ensure_dirs(inbox_dir, archive_dir)
    files = scan_inbox(inbox_dir)

    if not files:
        click.echo("No files in inbox.")
        return

    pipelines: dict[str, Pipeline] = {}
    for file_path in files:
        item = parse_file(file_path)
        pipeline_name = item.pipeline or default_pipeline
        try:
            if pipeline_name not in pipelines:
                pipelines[pipeline_name] = state.factory.create_from_config(pipeline_name)
            response = await pipelines[pipeline_name].execute_with_request(item.to_request())
            saved = save_to_file(
                item.prompt, response, pipeline_name, state.config.defaults.output_dir, slug_override=file_path.stem
            )
            archived = archive_file(file_path, archive_dir)
            click.echo(f"Processed: {file_path.name} -> {saved} (archived: {archived.name})")
        except (ChorusError, ProviderError) as exc:
            logger.error("Failed: %s -- %s", file_path.name, exc)
            archive_file(file_path, archive_dir, failed=True)


@main.command()
@click.argument("prompt", required=False)
@click.option("--file", "prompt_file", type=click.Path(exists=True), help="Read the prompt from a file")
@click.option("--provider", default=None, help="Provider name (default: from config)")
@click.option("--fallback", default=None, help="Provider to try once if the first one fails")
@_common_run_options
@click.pass_obj
def ask(state: CliState, prompt, prompt_file, provider, fallback, retries, save, skip_health_check) -> None:
    """Send PROMPT to a single provider."""
    provider_name = provider or state.config.defaults.default_provider
    pipeline_config = _ad_hoc(state, "ask", PipelineType.SIMPLE, retries, provider=provider_name)
    if fallback:
        pipeline_config.options["fallback"] = fallback
    _run_config(state, pipeline_config, _read_prompt(prompt, prompt_file), save=save, skip_health_check=skip_health_check)


@main.command()
@click.argument("prompt", required=False)
@click.option("--file", "prompt_file", type=click.Path(exists=True), help="Read the prompt from a file")
@click.option("-p", "--providers", required=True, help="Comma-separated providers, in stage order")
@_common_run_options
@click.pass_obj
def serial(state: CliState, prompt, prompt_file, providers, retries, save, skip_health_check) -> None:
    """Chain providers: each one's answer is the next one's prompt."""
    pipeline_config = _ad_hoc(state, "serial", PipelineType.SERIAL, retries, providers=_split(providers))
    _run_config(state, pipeline_config, _read_prompt(prompt, prompt_file), save=save, skip_health_check=skip_health_check)


@main.command()
@click.argument("prompt", required=False)
@click.option("--file", "prompt_file", type=click.Path(exists=True), help="Read the prompt from a file")
@click.option("-p", "--providers", required=True, help="Comma-separated providers to fan out to")
@click.option("--combiner", default="concat", show_default=True, help="How to merge the responses")
@click.option("--judge", default=None, help="Evaluator for the consensus and best_picker combiners")
@click.option("--separator", default=None, help="Separator for the concat combiner")
@_common_run_options
@click.pass_obj
def parallel(state: CliState, prompt, prompt_file, providers, combiner, judge, separator, retries, save,
             skip_health_check) -> None:
    """Ask several providers at once and combine their answers."""
    try:
        combiner_type = parse_combiner_type(combiner)
    except ChorusError as exc:
        _fail(str(exc))
        return
    pipeline_config = _ad_hoc(
        state,
        "parallel",
        PipelineType.PARALLEL,
        retries,
        providers=_split(providers),
        combiner=combiner_type.value,
        combiner_config=CombinerConfig(separator=separator or "", judge_provider=judge or ""),
    )
    _run_config(state, pipeline_config, _read_prompt(prompt, prompt_file), save=save, skip_health_check=skip_health_check)


@main.command()
@click.argument("prompt", required=False)
@click.option("--file", "prompt_file", type=click.Path(exists=True), help="Read the prompt from a file")
@click.option("-p", "--providers", required=True, help="Comma-separated discussion participants")
@click.option("--rounds", default=None, type=int, help="Discussion rounds (default: from config)")
@_common_run_options
@click.pass_obj
def collab(state: CliState, prompt, prompt_file, providers, rounds, retries, save, skip_health_check) -> None:
    """Run a multi-round discussion between providers, summarised by the first one."""
    pipeline_config = _ad_hoc(
        state,
        "collaborative",
        PipelineType.COLLABORATIVE,
        retries,
        providers=_split(providers),
        rounds=rounds if rounds is not None else state.config.defaults.rounds,
    )
    _run_config(
        state,
        pipeline_config,
        _read_prompt(prompt, prompt_file),
        save=save,
        skip_health_check=skip_health_check,
        show_discussion=True,
    )


@main.command()
@click.argument("prompt", required=False)
@click.option("--file", "prompt_file", type=click.Path(exists=True), help="Read the prompt from a file")
@click.option("-p", "--providers", required=True, help="Comma-separated providers that answer")
@click.option("--jurors", required=True, help="Comma-separated providers that vote on the answers")
@click.option("--voting", type=click.Choice(["majority", "consensus", "weighted"]), default="majority",
              show_default=True)
@_common_run_options
@click.pass_obj
def jury(state: CliState, prompt, prompt_file, providers, jurors, voting, retries, save, skip_health_check) -> None:
    """Answer with several providers and let a jury of providers pick the best answer."""
    pipeline_config = _ad_hoc(
        state,
        "jury",
        PipelineType.PARALLEL,
        retries,
        providers=_split(providers),
        combiner="jury",
        jurors=_split(jurors),
        voting=voting,
    )
    _run_config(state, pipeline_config, _read_prompt(prompt, prompt_file), save=save, skip_health_check=skip_health_check)


@main.group()
def pipeline() -> None:
    """Manage saved pipeline configs."""


@pipeline.command("create")
@click.argument("name")
@click.option("--type", "type_name", required=True, help="simple, serial, parallel, collaborative, high_availability, consensus")
@click.option("--provider", default=None, help="Provider for a simple pipeline")
@click.option("-p", "--providers", default=None, help="Comma-separated providers")
@click.option("--combiner", default=None, help="Combiner for a parallel pipeline")
@click.option("--judge", default=None, help="Evaluator for consensus and best_picker")
@click.option("--jurors", default=None, help="Comma-separated jurors for the jury combiner")
@click.option("--voting", default=None, help="Jury voting method")
@click.option("--rounds", default=None, type=int, help="Rounds for a collaborative pipeline")
@click.option("--separator", default=None, help="Separator for the concat combiner")
@click.option("--ha-strategy", type=click.Choice(["fallback", "race"]), default=None,
              help="How a high_availability pipeline uses its providers")
@click.option("--retries", default=None, type=int, help="Attempts per provider call")
@click.option("--cache", default=None, type=int, help="Cache TTL in seconds (simple pipelines)")
@click.option("--fallback", default=None, help="Fallback provider (simple pipelines)")
@click.option("--description", default="", help="Free-text description")
@click.option("--force", is_flag=True, default=False, help="Overwrite an existing config")
@click.pass_obj
def pipeline_create(
    state: CliState,
    name: str,
    type_name: str,
    provider: str | None,
    providers: str | None,
    combiner: str | None,
    judge: str | None,
    jurors: str | None,
    voting: str | None,
    rounds: int | None,
    separator: str | None,
    ha_strategy: str | None,
    retries: int | None,
    cache: int | None,
    fallback: str | None,
    description: str,
    force: bool,
) -> None:
    """Save a new pipeline config NAME."""
    options: dict = {}
    if retries is not None:
        options["max_retries"] = retries
    if cache:
        options["cache"] = cache
    if fallback:
        options["fallback"] = fallback

    try:
        if state.factory.store.exists(name) and not force:
            _fail(f"pipeline config '{name}' already exists (use --force to overwrite)")
        pipeline_config = PipelineConfig(
            name=name,
            type=parse_pipeline_type(type_name),
            description=description,
            version="1",
            provider=provider or "",
            providers=_split(providers),
            rounds=rounds or 0,
            combiner=parse_combiner_type(combiner).value if combiner else "",
            combiner_config=CombinerConfig(separator=separator or "", judge_provider=judge or ""),
            jurors=_split(jurors),
            voting=voting or "",
            ha_strategy=ha_strategy or "",
            options=options,
        )
        state.factory.create_from_pipeline_config(pipeline_config)
        state.factory.save_config(pipeline_config)
    except ChorusError as exc:
        _fail(str(exc))
        return
    console.print(f"[green]Saved pipeline[/green] {name}")


@pipeline.command("list")
@click.pass_obj
def pipeline_list(state: CliState) -> None:
    """List saved pipeline configs."""
    try:
        configs = state.factory.list_configs()
    except ChorusError as exc:
        _fail(str(exc))
        return
    if not configs:
        click.echo("No saved pipelines.")
        return
    print_pipeline_table(configs)


@pipeline.command("show")
@click.argument("name")
@click.pass_obj
def pipeline_show(state: CliState, name: str) -> None:
    """Print the stored JSON for NAME."""
    try:
        print_pipeline_config(state.factory.load_config(name))
    except ChorusError as exc:
        _fail(str(exc))


@pipeline.command("delete")
@click.argument("name")
@click.option("--yes", is_flag=True, default=False, help="Do not ask for confirmation")
@click.pass_obj
def pipeline_delete(state: CliState, name: str, yes: bool) -> None:
    """Delete the saved pipeline NAME."""
    if not yes and not click.confirm(f"Delete pipeline '{name}'?", default=False):
        return
    try:
        state.factory.delete_config(name)
    except ChorusError as exc:
        _fail(str(exc))
        return
    console.print(f"[green]Deleted pipeline[/green] {name}")


@pipeline.command("export")
@click.argument("name")
@click.option("-o", "--output", "output_file", default=None, type=click.Path(dir_okay=False),
              help="Write to a file instead of stdout")
@click.pass_obj
def pipeline_export(state: CliState, name: str, output_file: str | None) -> None:
    """Export NAME as a standalone JSON document."""
    try:
        data = state.factory.export_config(name)
    except ChorusError as exc:
        _fail(str(exc))
        return
    if output_file:
        Path(output_file).write_text(data + "\n", encoding="utf-8")
        console.print(f"[dim]Exported to: {output_file}[/dim]")
    else:
        click.echo(data)


@pipeline.command("import")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.pass_obj
def pipeline_import(state: CliState, file: str) -> None:
    """Import a pipeline exported with `chorus pipeline export`."""
    try:
        imported = state.factory.import_config(Path(file).read_text(encoding="utf-8"))
    except ChorusError as exc:
        _fail(str(exc))
        return
    console.print(f"[green]Imported pipeline[/green] {imported.name}")


@main.command()
@click.option("--ping/--no-ping", default=True, help="Send a short prompt to each available provider")
@click.pass_obj
def providers(state: CliState, ping: bool) -> None:
    """List configured providers and check that they respond."""
    registry = state.factory.registry
    available = registry.list_providers()

    results: dict[str, tuple[bool, str]] = {}
    if ping and available:
        console.print("\n[bold]Checking providers...[/bold]")
        built = {}
        for name in available:
            try:
                built[name] = registry.create_provider(name)
            except ChorusError as exc:
                results[name] = (False, str(exc))
        results.update(asyncio.run(run_health_checks(built)))

    table = Table(title="Providers")
    table.add_column("Name", style="bold cyan")
    table.add_column("Model")
    table.add_column("Status")
    for name in sorted(state.config.models):
        model_cfg = state.config.models[name]
        if name not in available:
            status = f"[dim]no API key ({model_cfg.api_key_env})[/dim]"
        elif name not in results:
            status = "available"
        elif results[name][0]:
            status = "[green]OK[/green]"
        else:
            status = f"[red]FAIL[/red] {escape(results[name][1].splitlines()[0][:80]) if results[name][1] else ''}"
        table.add_row(name, model_cfg.model, status)
    console.print(table)


if __name__ == "__main__":
    main()
