from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

import click

from taintchain.chains.catalog import register_catalog
from taintchain.config import TaintChainSettings, load_config
from taintchain.core.logging import setup_logging
from taintchain.core.metrics import metrics_generate_latest
from taintchain.core.telemetry import init_tracing, shutdown_tracing
from taintchain.corpus import install_corpus
from taintchain.errors import TaintChainError
from taintchain.harness import TaintHarness
from taintchain.models.chains import ChainRunResult, RunScopes
from taintchain.models.registry import SinkCategory
from taintchain.persistence.run_ledger import SQLiteRunLedger
from taintchain.protocols.ledger import RunLedger
from taintchain.stubs import InMemoryRunLedger

logger = logging.getLogger(__name__)

_CATEGORY_CHOICE = click.Choice([c.value for c in SinkCategory], case_sensitive=False)


def _load_settings(config_path: Path | None) -> TaintChainSettings:
    if config_path is None:
        return TaintChainSettings()
    return load_config(config_path)


def build_harness(settings: TaintChainSettings, catalogs: tuple[Path, ...] = ()) -> TaintHarness:
    harness = TaintHarness(settings.harness)
    if settings.include_corpus:
        install_corpus(harness)
    for catalog in [*settings.catalogs, *catalogs]:
        handles = register_catalog(harness.chains, catalog)
        logger.info("catalog_loaded path=%s chains=%d", catalog, len(handles))
    return harness


def _open_harness(
    config_path: Path | None, catalogs: tuple[Path, ...]
) -> tuple[TaintChainSettings, TaintHarness]:
    try:
        settings = _load_settings(config_path)
        return settings, build_harness(settings, catalogs)
    except (TaintChainError, FileNotFoundError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc


async def _run_chains(
    harness: TaintHarness,
    chain_ids: list[str],
    *,
    session_id: str,
    repeat: int,
    ledger: RunLedger,
) -> list[ChainRunResult]:
    results: list[ChainRunResult] = []
    try:
        for _ in range(repeat):
            for chain_id in chain_ids:
                result = await harness.run_chain(chain_id, RunScopes(session_id=session_id))
                await ledger.record(result)
                results.append(result)
    finally:
        harness.end_session(session_id)
    return results


def _format_result(result: ChainRunResult) -> str:
    last = result.trace[-1] if result.trace else None
    labels = ",".join(sorted(str(label) for label in last.labels)) if last else ""
    line = (
        f"{result.state.value:<10} {result.chain_id:<32} "
        f"hops={last.hop_count if last else 0} labels=[{labels}]"
    )
    if result.error is not None:
        line += f" error={result.error.kind}: {result.error.message}"
    return line


@click.group()
def cli() -> None:
    """Taint-propagation benchmark harness."""
    setup_logging()


@cli.command("list")
@click.option("--category", type=_CATEGORY_CHOICE, default=None)
@click.option(
    "--catalog",
    "catalogs",
    multiple=True,
    type=click.Path(path_type=Path, dir_okay=False),
)
@click.option("--config", "config_path", type=click.Path(path_type=Path), default=None)
def list_command(
    category: str | None, catalogs: tuple[Path, ...], config_path: Path | None
) -> None:
    """List defined chains and their expected sink category."""
    _, harness = _open_harness(config_path, catalogs)
    for handle in harness.list_chains(category):
        click.echo(f"{handle.chain_id:<32} {handle.expected_category.value:<10} {handle.name}")


@cli.command("run")
@click.option("--chain", "chain_ids", multiple=True, help="Chain id to run; repeatable.")
@click.option("--category", type=_CATEGORY_CHOICE, default=None)
@click.option("--session-id", default="cli-session", show_default=True)
@click.option("--repeat", type=click.IntRange(min=1), default=1, show_default=True)
@click.option("--json", "json_output", is_flag=True, help="Print run records as JSON.")
@click.option("--ledger", "ledger_path", type=click.Path(path_type=Path), default=None)
@click.option(
    "--catalog",
    "catalogs",
    multiple=True,
    type=click.Path(path_type=Path, dir_okay=False),
)
@click.option("--config", "config_path", type=click.Path(path_type=Path), default=None)
@click.option("--metrics-out", type=click.Path(path_type=Path, dir_okay=False), default=None)
def run_command(
    chain_ids: tuple[str, ...],
    category: str | None,
    session_id: str,
    repeat: int,
    json_output: bool,
    ledger_path: Path | None,
    catalogs: tuple[Path, ...],
    config_path: Path | None,
    metrics_out: Path | None,
) -> None:
    """Run chains and report whether taint reached each sink."""
    settings, harness = _open_harness(config_path, catalogs)
    setup_logging(settings.logging.level, settings.logging.json_output)
    if settings.telemetry.enabled:
        init_tracing(env=settings.telemetry.env, endpoint=settings.telemetry.endpoint)

    selected = list(chain_ids) or [h.chain_id for h in harness.list_chains(category)]
    if not selected:
        raise click.ClickException("no chains to run")

    ledger_file = ledger_path or settings.ledger.path
    ledger: RunLedger
    if ledger_file is not None:
        sqlite_ledger = SQLiteRunLedger(str(ledger_file))
        asyncio.run(sqlite_ledger.initialize())
        ledger = sqlite_ledger
    else:
        ledger = InMemoryRunLedger()

    try:
        results = asyncio.run(
            _run_chains(harness, selected, session_id=session_id, repeat=repeat, ledger=ledger)
        )
    except TaintChainError as exc:
        raise click.ClickException(str(exc)) from exc
    finally:
        shutdown_tracing()

    if json_output:
        click.echo(json.dumps([r.to_record() for r in results], indent=2, default=str))
    else:
        for result in results:
            click.echo(_format_result(result))
        summary = asyncio.run(ledger.summary())
        click.echo(" ".join(f"{state}={count}" for state, count in sorted(summary.items())))
        if harness.flagged_operators:
            click.echo(f"flagged operators: {', '.join(sorted(harness.flagged_operators))}")

    if metrics_out is not None and settings.metrics.enabled:
        metrics_out.write_bytes(metrics_generate_latest())

    if any(not result.completed for result in results):
        sys.exit(1)


@cli.command("ground-truth")
@click.option("--category", type=_CATEGORY_CHOICE, default=None)
@click.option(
    "--catalog",
    "catalogs",
    multiple=True,
    type=click.Path(path_type=Path, dir_okay=False),
)
@click.option("--config", "config_path", type=click.Path(path_type=Path), default=None)
def ground_truth_command(
    category: str | None, catalogs: tuple[Path, ...], config_path: Path | None
) -> None:
    """Print the expected source-to-sink flows as JSON."""
    _, harness = _open_harness(config_path, catalogs)
    click.echo(json.dumps(harness.ground_truth(category), indent=2))


__all__ = ["build_harness", "cli"]


if __name__ == "__main__":
    cli()
