import logging
import threading
import typer
from pathlib import Path
from typing import Optional, Tuple
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table
from vidx.config.loader import load_config
from vidx.config.models import AppConfig
from vidx.domain.errors import ConfigError, InvalidPath, NotFound
from vidx.domain.events import DiscoveryFinished, FileIndexed, FileIndexFailed
from vidx.domain.models import SortKey, SortOrder
from vidx.infrastructure.event_bus import EventBus
from vidx.infrastructure.ffmpeg import FFmpegAdapter
from vidx.infrastructure.ffprobe import FFprobeAdapter
from vidx.infrastructure.file_scanner import VideoScanner
from vidx.infrastructure.index_store import VideoIndexStore
from vidx.infrastructure.logging import setup_logging
from vidx.infrastructure.web_server import VideoWebServer
from vidx.pipeline.library import VideoLibrary, format_duration
from vidx.pipeline.orchestrator import IndexOrchestrator
from vidx.pipeline.thumbnails import ThumbnailGenerator

app = typer.Typer(help="vidx - video library indexer and range streaming server")

DEFAULT_CONFIG = Path("conf/vidx.yaml")


def _load(
    config_path: Optional[Path],
    smart_thumb: Optional[bool] = None,
    debug: bool = False,
    log_path: Optional[Path] = None,
) -> AppConfig:
    """Load config and apply CLI overrides; exits on a config error."""
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    if smart_thumb is not None:
        config.thumbnails.smart = smart_thumb
    if debug:
        config.debug = True
    if log_path is not None:
        config.log_path = log_path
    return config


def build_components(
    config: AppConfig, event_bus: Optional[EventBus] = None
) -> Tuple[VideoIndexStore, IndexOrchestrator, VideoLibrary]:
    """Wire the store, adapters, orchestrator and query facade."""
    store = VideoIndexStore(config.library.db_path)
    scanner = VideoScanner(config.library.extensions, cache_dir=config.library.cache_dir)
    ffprobe = FFprobeAdapter(timeout=config.indexing.ffprobe_timeout, debug=config.debug)
    ffmpeg = FFmpegAdapter(
        width=config.thumbnails.width,
        height=config.thumbnails.height,
        timeout=config.thumbnails.ffmpeg_timeout,
        debug=config.debug,
    )
    thumbnailer = ThumbnailGenerator(ffmpeg, smart=config.thumbnails.smart)
    orchestrator = IndexOrchestrator(
        config=config,
        store=store,
        scanner=scanner,
        ffprobe_adapter=ffprobe,
        thumbnailer=thumbnailer,
        event_bus=event_bus,
    )
    return store, orchestrator, VideoLibrary(config, store, orchestrator)


@app.command()
def serve(
    config_path: Optional[Path] = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (overrides config)"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port (overrides config)"),
    smart_thumb: Optional[bool] = typer.Option(None, "--smart-thumb/--no-smart-thumb", help="Multi-candidate thumbnail selection"),
    eager_index: bool = typer.Option(False, "--eager-index", help="Start indexing at startup instead of on first request"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Path to log file (overrides config)"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Serve videos and thumbnails over HTTP."""
    config = _load(config_path, smart_thumb=smart_thumb, debug=debug, log_path=log_path)
    if host is not None:
        config.server.host = host
    if port is not None:
        config.server.port = port

    logger = setup_logging(config.effective_log_path, debug=config.debug, console=True)
    logger.info(
        f"vidx serve: root={config.library.root_dir}, smart_thumb={config.thumbnails.smart}, "
        f"workers={config.indexing.effective_workers}"
    )

    store, orchestrator, library = build_components(config)
    server = VideoWebServer(
        library,
        port=config.server.port,
        host=config.server.host,
        thumb_cache_max_age=config.thumbnails.cache_max_age,
        chunk_size=config.server.chunk_size,
    )
    try:
        if eager_index:
            threading.Thread(target=_warm_index, args=(orchestrator,), name="vidx-warm-index", daemon=True).start()
        server.serve_forever()
    except KeyboardInterrupt:
        typer.secho("\nServer stopped", fg=typer.colors.YELLOW)
    except OSError as exc:
        typer.secho(f"Error: cannot serve on {config.server.host}:{config.server.port}: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    finally:
        store.close()


def _warm_index(orchestrator: IndexOrchestrator) -> None:
    try:
        orchestrator.ensure_index()
    except Exception:
        logging.getLogger(__name__).exception("Initial indexing pass failed")


@app.command()
def rebuild(
    config_path: Optional[Path] = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
    force: bool = typer.Option(False, "--force", "--rebuild", help="Re-index every file regardless of cached state"),
    smart_thumb: Optional[bool] = typer.Option(None, "--smart-thumb/--no-smart-thumb", help="Multi-candidate thumbnail selection"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Path to log file (overrides config)"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Run one indexing pass with a progress bar."""
    config = _load(config_path, smart_thumb=smart_thumb, debug=debug, log_path=log_path)
    logger = setup_logging(config.effective_log_path, debug=config.debug)
    logger.info(f"vidx rebuild: root={config.library.root_dir}, force={force}, smart_thumb={config.thumbnails.smart}")

    bus = EventBus()
    store, orchestrator, _ = build_components(config, event_bus=bus)
    console = Console()

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=console,
            transient=False,
        ) as progress:
            task = progress.add_task("Scanning", total=None)
            failed = []

            def on_discovery(event: DiscoveryFinished):
                progress.update(task, total=event.files_to_index, description="Indexing")

            def on_file_failed(event: FileIndexFailed):
                failed.append(event.rel_path)
                progress.advance(task)

            bus.subscribe(DiscoveryFinished, on_discovery)
            bus.subscribe(FileIndexed, lambda event: progress.advance(task))
            bus.subscribe(FileIndexFailed, on_file_failed)

            result = orchestrator.rebuild(force=force)

        console.print(f"Done. Indexed {result.discovered} videos.")
        console.print(
            f"processed={result.queued} ok={result.indexed} failed={result.failed} "
            f"removed={result.removed} elapsed={result.elapsed_seconds:.1f}s"
        )
        for rel_path in failed:
            console.print(f"[red]failed[/red] {rel_path}")
    except KeyboardInterrupt:
        typer.secho("\nRebuild interrupted", fg=typer.colors.YELLOW)
        raise typer.Exit(code=130)
    except OSError as exc:
        logger.exception("Rebuild failed")
        typer.secho(f"Fatal Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    finally:
        store.close()


@app.command("ls")
def list_folder(
    folder: str = typer.Argument("", help="Folder relative to the library root"),
    config_path: Optional[Path] = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
    sort: SortKey = typer.Option(SortKey.CREATED_AT, "--sort", help="Sort key"),
    order: SortOrder = typer.Option(SortOrder.DESC, "--order", help="Sort order"),
):
    """List indexed videos in a folder (indexes first if needed)."""
    config = _load(config_path)
    setup_logging(config.effective_log_path, debug=config.debug)
    store, _, library = build_components(config)
    console = Console()
    try:
        subfolders = library.list_folders(folder)
        records = library.list_videos(folder, sort, order)
    except InvalidPath:
        typer.secho(f"Error: invalid path {folder!r}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    except NotFound as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    finally:
        store.close()

    table = Table(title=f"/{folder}")
    table.add_column("Name")
    table.add_column("Duration", justify="right")
    table.add_column("Status")
    for sub in subfolders:
        table.add_row(f"[bold]{sub['name']}/[/bold]", "", "")
    for record in records:
        status = "[red]error[/red]" if record.thumb_error else "ok"
        table.add_row(record.name, format_duration(record.duration), status)
    console.print(table)


if __name__ == "__main__":
    app()
