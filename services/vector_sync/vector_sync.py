"""Vector sync runner entry point.

Keeps the vector index in line with the order management system.

Usage:
    python -m services.vector_sync.vector_sync update
    python -m services.vector_sync.vector_sync rebuild
    python -m services.vector_sync.vector_sync health
    python -m services.vector_sync.vector_sync status
    python -m services.vector_sync.vector_sync serve-queue --interval 3600
"""

import asyncio
import json
from contextlib import asynccontextmanager
from typing import AsyncIterator

import typer

from services.vector_sync.SyncOrchestrator import SyncOrchestrator
from services.vector_sync.SyncQueue import SyncQueue
from services.vector_sync.errors import ConcurrentCycleRejected, SourceUnavailable
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.rag.RAGClientManager import RAGClientManager
from shared.clients.source.SourceClientManager import SourceClientManager
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging
from shared.models.config import SyncSettings
from shared.models.sync import SyncRunStats

app = typer.Typer(
    help="Incremental sync of orders into the vector index.",
    no_args_is_help=True,
    add_completion=False,
)


##########################################
################ WIRING ##################
##########################################

def build_orchestrator(helper_config: HelperConfig, settings: SyncSettings | None = None) -> SyncOrchestrator:
    """Instantiate the configured source, embedding and index clients and wire them into an orchestrator.

    Clients are not booted yet, see open_orchestrator().

    Raises:
        ValueError: If an engine is missing, unsupported or misconfigured.
    """
    settings = settings or SyncSettings.from_config(helper_config)
    return SyncOrchestrator(
        helper_config=helper_config,
        settings=settings,
        source_client=SourceClientManager(helper_config=helper_config).get_client(),
        embed_client=EmbedClientManager(helper_config=helper_config).get_client(),
        index_client=RAGClientManager(helper_config=helper_config).get_client(),
    )


@asynccontextmanager
async def open_orchestrator(helper_config: HelperConfig, prepare_index: bool = True) -> AsyncIterator[SyncOrchestrator]:
    """Build an orchestrator, boot its clients and close them again on exit.

    Args:
        helper_config (HelperConfig): Shared configuration.
        prepare_index (bool): Create the index collection if missing. Needs a reachable embedding provider.
    """
    orchestrator = build_orchestrator(helper_config)
    try:
        for client in orchestrator.clients:
            await client.boot()
        orchestrator.load_state()
        if prepare_index:
            await orchestrator.prepare_index()
        yield orchestrator
    finally:
        for client in orchestrator.clients:
            await client.close()


def _print_json(data) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


def _print_stats(stats: SyncRunStats) -> None:
    color = typer.colors.GREEN if stats.status == "succeeded" else typer.colors.YELLOW
    typer.secho(
        f"{stats.mode} {stats.status}: {stats.new_vectors} new, {stats.updated_vectors} updated, "
        f"{stats.deleted_vectors} deleted, {stats.unchanged_vectors} unchanged in {stats.elapsed_seconds:.2f}s",
        fg=color,
    )
    for error in stats.errors:
        typer.secho(f"  - {error}", fg=typer.colors.RED)


async def _run_cycle(helper_config: HelperConfig, full_rebuild: bool) -> SyncRunStats:
    async with open_orchestrator(helper_config) as orchestrator:
        if full_rebuild:
            return await orchestrator.run_full_rebuild()
        return await orchestrator.run_incremental_sync()


def _cycle_command(full_rebuild: bool) -> None:
    logger = setup_logging()
    config = HelperConfig(logger=logger)
    try:
        stats = asyncio.run(_run_cycle(config, full_rebuild=full_rebuild))
    except (SourceUnavailable, ConcurrentCycleRejected) as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(code=2) from e
    except ValueError as e:
        typer.secho(f"Configuration error: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1) from e
    _print_stats(stats)
    if stats.status == "partial":
        raise typer.Exit(code=1)


##########################################
############### COMMANDS #################
##########################################

@app.command("update")
def update_command() -> None:
    """Run one incremental sync cycle."""
    _cycle_command(full_rebuild=False)


@app.command("rebuild")
def rebuild_command() -> None:
    """Forget all tracked state and index every order again."""
    _cycle_command(full_rebuild=True)


@app.command("health")
def health_command() -> None:
    """Check the source, embedding and index providers."""
    logger = setup_logging()
    config = HelperConfig(logger=logger)

    async def _health():
        async with open_orchestrator(config, prepare_index=False) as orchestrator:
            return await orchestrator.get_health()

    try:
        report = asyncio.run(_health())
    except ValueError as e:
        typer.secho(f"Configuration error: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1) from e
    _print_json(report.model_dump(mode="json"))
    if not report.healthy:
        raise typer.Exit(code=1)


@app.command("status")
def status_command(recent: int = typer.Option(5, "--recent", "-n", help="Number of recent runs to show.")) -> None:
    """Show the change tracker summary and the latest runs."""
    logger = setup_logging()
    config = HelperConfig(logger=logger)
    try:
        orchestrator = build_orchestrator(config)
    except ValueError as e:
        typer.secho(f"Configuration error: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1) from e
    _print_json(orchestrator.get_status(recent=recent).model_dump(mode="json"))


@app.command("serve-queue")
def serve_queue_command(
    interval: float = typer.Option(3600.0, "--interval", "-i", help="Seconds between scheduled incremental syncs."),
    rebuild_first: bool = typer.Option(False, "--rebuild-first", help="Start with a full rebuild."),
) -> None:
    """Run the sync worker and enqueue an incremental sync every interval seconds."""
    logger = setup_logging()
    config = HelperConfig(logger=logger)

    async def _serve():
        async with open_orchestrator(config) as orchestrator:
            queue = SyncQueue(helper_config=config, orchestrator=orchestrator)
            queue.start()
            if rebuild_first:
                queue.enqueue("full_rebuild")
            try:
                while True:
                    queue.enqueue("incremental")
                    await asyncio.sleep(interval)
            finally:
                await queue.stop()

    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        logger.info("Sync worker interrupted, shutting down.")


if __name__ == "__main__":
    app()
