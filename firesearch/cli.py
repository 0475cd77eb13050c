"""
CLI commands for firesearch.

Provides the `firesearch` command-line interface for running the replication
process, inspecting the reference catalog and maintaining the query bridge.
"""

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from config.loader import ConfigurationError, ReferenceCatalogError, load_config, load_references
from core import __version__
from core.models.config import GlobalSettings, ReplicationConfig
from core.models.reference import ReferenceDescriptor
from core.search.bridge import QueryBridge
from core.storage.client import ElasticsearchSink
from core.storage.documents import FirestoreChangeFeed
from core.sync.engine import ReplicationEngine

console = Console()
logger = logging.getLogger(__name__)

config_option = click.option(
    '--config', '-c', 'config_path',
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help='JSON configuration file (default: $FIRESEARCH_CONFIG_FILE)'
)


@click.group()
@click.version_option(version=__version__, prog_name="firesearch")
def main():
    """
    firesearch CLI.

    Replicate Firestore collections into Elasticsearch and answer search
    requests written into Firestore.
    """
    pass


@main.command()
@config_option
@click.option(
    '--no-query-bridge',
    is_flag=True,
    help='Replicate only, do not answer search requests'
)
def run(config_path: Optional[Path], no_query_bridge: bool):
    """Run replication until interrupted."""
    config, references = _load(config_path)
    setup_logging(config.log_level, GlobalSettings().log_to_file)

    enable_bridge = config.query_bridge.enabled and not no_query_bridge
    console.print(f"[blue]🚀 Starting firesearch with {len(references)} references[/blue]")

    try:
        asyncio.run(_run_engine(config, references, enable_bridge))
    except KeyboardInterrupt:
        pass
    except Exception as e:
        console.print(f"[red]❌ Replication failed: {e}[/red]")
        sys.exit(1)

    console.print("[green]✅ Stopped[/green]")


@main.command()
@config_option
def references(config_path: Optional[Path]):
    """List the replicated references."""
    config, descriptors = _load(config_path)

    table = Table(title=f"References ({config.references})")
    table.add_column("Collection", style="cyan", no_wrap=True)
    table.add_column("Subcollection", style="white")
    table.add_column("Index / Type", style="yellow")
    table.add_column("Include", style="dim")
    table.add_column("Exclude", style="dim")
    table.add_column("Pipeline", style="dim")

    for descriptor in descriptors:
        describe = descriptor.describe()
        pipeline = [name for name in ("filter", "transform") if describe[name]]
        if describe["mappings"]:
            pipeline.append("mappings")
        table.add_row(
            describe["collection"],
            describe["subcollection"] or "-",
            f"{describe['index']} / {describe['type']}",
            ", ".join(describe["include"]) or "*",
            ", ".join(describe["exclude"]) or "-",
            ", ".join(pipeline) or "-"
        )

    console.print(table)


@main.command()
@config_option
def status(config_path: Optional[Path]):
    """Check Elasticsearch and summarize the configuration."""
    config, descriptors = _load(config_path)

    health = asyncio.run(_check_health(config))

    table = Table(title="firesearch Status")
    table.add_column("Component", style="cyan", no_wrap=True)
    table.add_column("Status", style="white")
    table.add_column("Details", style="dim")

    healthy = health.get("status") == "healthy"
    if healthy:
        table.add_row(
            "Elasticsearch", "[green]✅ Connected[/green]",
            f"{health['url']} ({health.get('cluster_status')})"
        )
    else:
        table.add_row(
            "Elasticsearch", "[red]❌ Not available[/red]",
            f"{health['url']}: {health.get('error', health.get('cluster_status'))}"
        )

    table.add_row("References", f"[green]{len(descriptors)}[/green]", config.references)
    subcollections = sum(1 for d in descriptors if d.is_subcollection)
    if subcollections:
        table.add_row("Subcollection references", f"[yellow]{subcollections}[/yellow]", "one subscription per parent")

    bridge = config.query_bridge
    if bridge.enabled:
        table.add_row(
            "Query Bridge", "[green]✅ Enabled[/green]",
            f"{bridge.collection} ({bridge.request_key} -> {bridge.response_key}), "
            f"cleanup every {bridge.cleanup_interval_s:g}s"
        )
    else:
        table.add_row("Query Bridge", "[yellow]Disabled[/yellow]", bridge.collection)

    console.print(table)
    if not healthy:
        sys.exit(1)


@main.command()
@config_option
def cleanup(config_path: Optional[Path]):
    """Delete answered search requests older than the retention interval."""
    config = _load_config(config_path)
    setup_logging(config.log_level, GlobalSettings().log_to_file)

    try:
        deleted = asyncio.run(_run_cleanup(config))
    except Exception as e:
        console.print(f"[red]❌ Cleanup failed: {e}[/red]")
        sys.exit(1)

    console.print(f"[green]🧹 Removed {deleted} answered requests from '{config.query_bridge.collection}'[/green]")


def setup_logging(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """Route log records to a rich console handler, and optionally a file."""
    handlers: List[logging.Handler] = [RichHandler(console=Console(stderr=True), rich_tracebacks=True)]
    if log_file is not None:
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        handlers.append(file_handler)

    logging.basicConfig(level=level, format='%(message)s', datefmt='[%X]', handlers=handlers, force=True)

    # Client libraries log every request at INFO
    logging.getLogger("elastic_transport").setLevel(logging.WARNING)


def _load_config(config_path: Optional[Path]) -> ReplicationConfig:
    try:
        return load_config(config_path)
    except ConfigurationError as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)


def _load(config_path: Optional[Path]) -> Tuple[ReplicationConfig, List[ReferenceDescriptor]]:
    config = _load_config(config_path)
    try:
        return config, load_references(config.references)
    except ReferenceCatalogError as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)


async def _run_engine(
    config: ReplicationConfig,
    references: List[ReferenceDescriptor],
    enable_query_bridge: bool
) -> None:
    """Run the engine until SIGINT or SIGTERM."""
    feed = FirestoreChangeFeed(config.firestore)
    sink = ElasticsearchSink(config.elasticsearch)
    engine = ReplicationEngine(feed, sink, references, config, enable_query_bridge=enable_query_bridge)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows: Ctrl+C still arrives as KeyboardInterrupt
            pass

    try:
        await engine.start()
        await stop_event.wait()
        logger.info("🛑 Received shutdown signal")
    finally:
        await engine.stop()
        await sink.close()
        feed.close()


async def _check_health(config: ReplicationConfig) -> dict:
    sink = ElasticsearchSink(config.elasticsearch)
    try:
        return await sink.health_check()
    finally:
        await sink.close()


async def _run_cleanup(config: ReplicationConfig) -> int:
    feed = FirestoreChangeFeed(config.firestore)
    sink = ElasticsearchSink(config.elasticsearch)
    bridge = QueryBridge(feed, sink, config.query_bridge)
    try:
        return await bridge.cleanup()
    finally:
        await sink.close()
        feed.close()


if __name__ == "__main__":
    main()
