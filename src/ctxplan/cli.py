"""Command-line interface for ctxplan."""

from __future__ import annotations

import json
import logging
import sys
import time
from pathlib import Path

import click
from rich.logging import RichHandler

from ctxplan import __version__
from ctxplan.config import (
    ProjectConfig,
    find_project_root,
    load_config,
    save_config,
    set_config_value,
)
from ctxplan.corpus.models import CorpusSnapshot
from ctxplan.exceptions import ConfigurationError, LLMError
from ctxplan.models import ClusteringStrategy
from ctxplan.ui.console import Console

console = Console()


def _get_project_root(path: str | None = None) -> Path:
    """Find the project root or error."""
    if path:
        root = Path(path).resolve()
        if not root.exists():
            console.error(f"Path does not exist: {path}")
            sys.exit(1)
        return root

    root = find_project_root()
    if root is None:
        console.error(
            "No ctxplan project found. Run 'ctxplan init' first, "
            "or specify a path with --path."
        )
        sys.exit(1)
    return root


def _load_corpus(root: Path, config: ProjectConfig, show_progress: bool = True) -> CorpusSnapshot:
    """Read the project's documents and index them."""
    from ctxplan.corpus.index import DocumentCorpusIndex
    from ctxplan.corpus.source import load_directory

    if not show_progress:
        raw = load_directory(root, config.exclude_patterns)
        return DocumentCorpusIndex().index(raw)

    with console.indexing_progress() as progress:
        task = progress.add_task("Loading documents...", total=None)

        def on_progress(file_path: str, current: int, total: int):
            progress.update(task, total=total, completed=current, description=f"Reading {file_path}")

        raw = load_directory(root, config.exclude_patterns, on_progress)
    return DocumentCorpusIndex().index(raw)


@click.group()
@click.version_option(version=__version__, prog_name="ctxplan")
@click.option("--verbose", "-v", count=True, help="Log planning decisions (-vv for debug).")
def main(verbose: int):
    """ctxplan - fit a document corpus into an LLM context budget."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG if verbose > 1 else logging.INFO,
            format="%(message)s",
            handlers=[RichHandler(console=console.console, show_path=False)],
        )


@main.command()
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--provider", default=None, help="LLM provider for summarization (openai, anthropic).")
@click.option("--model", default=None, help="LLM model name.")
def init(path: str | None, provider: str | None, model: str | None):
    """Initialize ctxplan for a directory of project documents."""
    root = Path(path or ".").resolve()
    if not root.exists():
        console.error(f"Path does not exist: {root}")
        sys.exit(1)

    console.banner()
    console.info(f"Initializing ctxplan for: {root}")

    config = load_config(root)
    config.name = root.name
    config.root_path = str(root)

    if provider:
        config.llm.provider = provider
    if model:
        config.llm.model = model

    save_config(root, config)
    console.success("Configuration saved")

    start_time = time.time()
    snapshot = _load_corpus(root, config)
    elapsed = time.time() - start_time

    console.success(f"Indexed {len(snapshot)} documents in {elapsed:.1f}s")
    console.show_corpus_stats(snapshot)
    for failure in snapshot.failures:
        console.warning(f"{failure.document_id}: {failure.message}")


@main.command()
@click.option("--path", "-p", default=None, help="Path to the project root.")
def status(path: str | None):
    """Show what the corpus looks like."""
    root = _get_project_root(path)
    config = load_config(root)
    snapshot = _load_corpus(root, config, show_progress=False)
    console.show_corpus_stats(snapshot)


# =========================================================================
# Planning
# =========================================================================

@main.command()
@click.argument("target_type")
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--provider", default=None, help="AI provider whose context limit sets the budget.")
@click.option("--budget", "-b", default=None, type=int, help="Explicit token budget (overrides --provider).")
@click.option(
    "--strategy", "-s",
    type=click.Choice([s.value for s in ClusteringStrategy]),
    default=None,
    help="Force a clustering strategy.",
)
@click.option("--hint", default=None, help="Extra context that boosts documents mentioning it.")
@click.option(
    "--no-preserve-critical", is_flag=True,
    help="Allow critical documents to be excluded when they cannot fit.",
)
@click.option("--summarize", is_flag=True, help="Enable LLM summarization using the configured provider.")
@click.option("--json", "as_json", is_flag=True, help="Print the plan as JSON.")
@click.option("--render", is_flag=True, help="Print the assembled context text.")
def plan(
    target_type: str, path: str | None, provider: str | None, budget: int | None,
    strategy: str | None, hint: str | None, no_preserve_critical: bool,
    summarize: bool, as_json: bool, render: bool,
):
    """Plan which documents fit the context budget for TARGET_TYPE.

    Examples:

        ctxplan plan project-charter --provider openai

        ctxplan plan risk-register --budget 20000 --strategy category

        ctxplan plan technical-specification --provider ollama --render
    """
    from ctxplan.planning.planner import ContextPlanner

    root = _get_project_root(path)
    config = load_config(root)

    if provider is None and budget is None:
        console.error("Specify --provider or --budget.")
        sys.exit(1)

    summarizer = None
    if summarize:
        if not config.llm.provider:
            console.error("No LLM provider configured. Set one with: ctxplan config set llm.provider openai")
            sys.exit(1)
        from ctxplan.llm.summarizer import LLMSummarizer

        try:
            summarizer = LLMSummarizer.from_config(config.llm)
        except (ConfigurationError, LLMError) as e:
            console.error(str(e))
            sys.exit(1)

    snapshot = _load_corpus(root, config, show_progress=not as_json)
    planner = ContextPlanner(snapshot, config=config, summarizer=summarizer)
    request = {
        "target_document_type": target_type,
        "provider_id": provider,
        "max_tokens": budget,
        "strategy_hint": strategy,
        "preserve_critical_documents": not no_preserve_critical,
        "hint_context": hint,
    }

    try:
        result = planner.plan_context(request)
    except ConfigurationError as e:
        console.error(str(e))
        sys.exit(1)

    if as_json:
        click.echo(result.to_json(include_content=render))
        return

    console.show_plan(result)
    if render:
        console.console.print()
        console.console.print(result.render(), markup=False, highlight=False)


@main.command()
@click.option("--path", "-p", default=None, help="Path to the project root.")
def providers(path: str | None):
    """List known AI providers and their context budgets."""
    from ctxplan.planning.registry import ProviderCapabilityRegistry

    root = Path(path).resolve() if path else find_project_root()
    config = load_config(root) if root else ProjectConfig()

    registry = ProviderCapabilityRegistry(safety_margin=config.allocation.safety_margin)
    for override in config.providers:
        registry.register(override.provider_id, override.max_context_tokens, override.safety_margin)
    console.show_providers(registry.snapshot())


# =========================================================================
# Configuration
# =========================================================================

@main.command("config")
@click.argument("action", type=click.Choice(["set", "get", "show"]))
@click.argument("key", required=False)
@click.argument("value", required=False)
@click.option("--path", "-p", default=None, help="Path to the project root.")
def config_cmd(action: str, key: str | None, value: str | None, path: str | None):
    """Manage ctxplan configuration."""
    root = _get_project_root(path)
    config = load_config(root)

    if action == "show":
        console.console.print_json(json.dumps(config.model_dump(), indent=2))
    elif action == "get":
        if not key:
            console.error("Usage: ctxplan config get <key>")
            sys.exit(1)
        data = config.model_dump()
        parts = key.split(".")
        for part in parts:
            if isinstance(data, dict) and part in data:
                data = data[part]
            else:
                console.error(f"Unknown key: {key}")
                sys.exit(1)
        console.console.print(f"{key} = {data}")
    elif action == "set":
        if not key or value is None:
            console.error("Usage: ctxplan config set <key> <value>")
            sys.exit(1)
        try:
            # Try to parse as JSON for non-string values
            try:
                parsed_value = json.loads(value)
            except json.JSONDecodeError:
                parsed_value = value

            config = set_config_value(config, key, parsed_value)
            save_config(root, config)
            console.success(f"Set {key} = {parsed_value}")
        except KeyError:
            console.error(f"Unknown config key: {key}")
            sys.exit(1)


if __name__ == "__main__":
    main()
