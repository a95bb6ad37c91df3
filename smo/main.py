import typer
import warnings
from pathlib import Path
from typing import Optional
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

# Silence warnings (especially from pyexiftool) to keep the progress display clean
warnings.filterwarnings("ignore")
from smo.config.loader import load_config, apply_overrides
from smo.domain.errors import DiscoveryError, MissingDependencyError
from smo.infrastructure.logging import setup_logging
from smo.infrastructure.event_bus import EventBus
from smo.infrastructure.file_scanner import FileScanner
from smo.infrastructure.exif_tool import ExifToolAdapter
from smo.infrastructure.housekeeping import HousekeepingService
from smo.infrastructure.state_store import StateStore
from smo.infrastructure.tool_registry import ToolRegistry
from smo.pipeline.orchestrator import Orchestrator
from smo.pipeline.processors import build_processors
from smo.ui.state import ProgressTracker
from smo.ui.manager import UIManager
from smo.ui.dashboard import ProgressDisplay, render_summary
from smo.ui.json_output import JsonEventWriter

app = typer.Typer(help="SMO (Space Media Optimizer) - shrink photos and videos in place")


def _fail(message: str, json_writer: Optional[JsonEventWriter] = None, details: Optional[str] = None):
    if json_writer:
        json_writer.error(message, details)
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err.get("loc", ()) if p not in ("general", "extensions")) or "config"
        parts.append(f"{field}: {err.get('msg')}")
    return "; ".join(parts)


def print_tools_report(console: Console, registry: ToolRegistry):
    table = Table(title="External tools")
    table.add_column("Tool", style="bold")
    table.add_column("Status")
    table.add_column("Path", style="dim")
    for tool, path in registry.report():
        status = "[green]available[/green]" if path else "[red]missing[/red]"
        table.add_row(tool, status, str(path) if path else "-")
    console.print(table)


@app.command()
def optimize(
    media_dir: Optional[Path] = typer.Argument(None, help="Directory tree of photos and videos to optimize in place"),
    quality: Optional[int] = typer.Option(None, "--quality", "-q", help="JPEG/WebP quality (1-100) [default: 80]"),
    crf: Optional[int] = typer.Option(None, "--crf", "-c", help="Video CRF (0-51) [default: 26]"),
    audio_bitrate: Optional[str] = typer.Option(None, "--audio-bitrate", "-a", help="Video audio bitrate [default: 128k]"),
    threshold: Optional[float] = typer.Option(
        None, "--threshold", "-t", help="Replace only if optimized < original * threshold [default: 0.9]"
    ),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", help="Parallel workers [default: 4]"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Report what would change; touch nothing"),
    verbose: bool = typer.Option(False, "--verbose", help="Show per-file details and debug logging"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to YAML config"),
    state_dir: Optional[Path] = typer.Option(None, "--state-dir", help="Directory holding state files"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Path to log file (overrides config)"),
    output_dir: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Write results to this directory (mirroring MEDIA_DIR) instead of in place"
    ),
    keep_processed: bool = typer.Option(False, "--keep-processed", help="With --output, skip files whose output already exists"),
    skip_video_compression: bool = typer.Option(
        False, "--skip-video-compression", help="Leave videos as they are (copied as-is with --output)"
    ),
    json_output: bool = typer.Option(False, "--json", help="Emit JSON lines on stdout instead of the progress bar"),
    no_progress: bool = typer.Option(False, "--no-progress", help="Disable the live progress bar"),
    check_tools: bool = typer.Option(False, "--check-tools", help="Print external tool availability and exit"),
):
    """Optimize every photo and video under MEDIA_DIR, replacing files only when it pays off."""
    json_writer = JsonEventWriter() if json_output else None
    console = Console(stderr=json_output)

    try:
        config = load_config(config_path)
        config = apply_overrides(
            config,
            quality=quality,
            crf=crf,
            audio_bitrate=audio_bitrate,
            threshold=threshold,
            workers=workers,
            dry_run=dry_run or None,
            verbose=verbose or None,
            state_dir=state_dir,
            log_path=log_path,
            output_dir=output_dir,
            keep_processed=keep_processed or None,
            skip_video_compression=skip_video_compression or None,
        )
    except ValidationError as exc:
        _fail(f"Invalid configuration: {_format_validation_error(exc)}", json_writer)
    except (FileNotFoundError, ValueError) as exc:
        _fail(str(exc), json_writer)

    general = config.general

    if check_tools:
        print_tools_report(console, ToolRegistry.probe(general.tools_dir))
        raise typer.Exit(code=0)

    if media_dir is None:
        _fail("MEDIA_DIR is required", json_writer)

    logger = setup_logging(general.resolved_log_path, verbose=general.verbose, console=console)
    logger.info(f"SMO started: media_dir={media_dir}")
    logger.info(
        f"Config: quality={general.quality}, crf={general.crf}, audio={general.audio_bitrate}, "
        f"threshold={general.threshold}, workers={general.workers}, dry_run={general.dry_run}, "
        f"output={general.output_dir}, skip_video_compression={general.skip_video_compression}"
    )

    registry = ToolRegistry.probe(general.tools_dir)
    missing = registry.missing(general.required_tools)
    if missing:
        err = MissingDependencyError(missing[0], f"Required tool(s) not available: {', '.join(missing)}")
        logger.error(str(err))
        _fail(str(err), json_writer)
    if not registry.is_available("ffmpeg"):
        logger.warning("ffmpeg not found: videos will fail")

    scanner = FileScanner(
        image_extensions=config.extensions.image,
        video_extensions=config.extensions.video,
        follow_symlinks=general.follow_symlinks,
    )
    try:
        # Fail fast on an unreadable root before touching state or tools
        scanner.scan(media_dir)
    except DiscoveryError as exc:
        logger.error(str(exc))
        _fail(str(exc), json_writer)

    root = media_dir.resolve()
    output_root = None
    if general.output_dir is not None:
        output_root = general.output_dir.resolve()
        if output_root.exists() and not output_root.is_dir():
            _fail(f"Output path is not a directory: {output_root}", json_writer)
        if output_root == root or root in output_root.parents:
            _fail("Output directory must be outside MEDIA_DIR", json_writer)
        if not general.dry_run:
            try:
                output_root.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                _fail(f"Cannot create output directory {output_root}: {exc}", json_writer)
        logger.info(f"Output mode: results go to {output_root}")

    if not general.dry_run:
        housekeeping = HousekeepingService()
        removed = housekeeping.cleanup_temp_files(root)
        if output_root is not None and output_root.is_dir():
            removed += housekeeping.cleanup_temp_files(output_root)
        if removed:
            logger.info(f"Removed {removed} leftover temp file(s)")

    state_store = StateStore.load(root, general.resolved_state_dir)

    exif = None
    if registry.is_available("exiftool"):
        exif = ExifToolAdapter(registry.resolve("exiftool"), timeout_s=general.metadata_timeout_s)
    elif general.preserve_metadata:
        logger.warning("exiftool not found: metadata will not be copied to optimized files")

    bus = EventBus()
    tracker = ProgressTracker(dry_run=general.dry_run)
    display = None
    if not json_output and not no_progress:
        display = ProgressDisplay(console)
    UIManager(bus, tracker, config, display=display, json_writer=json_writer)

    orchestrator = Orchestrator(
        config=config,
        event_bus=bus,
        file_scanner=scanner,
        state_store=state_store,
        processors=build_processors(general, registry, exif),
    )

    try:
        if display:
            with display:
                orchestrator.run(root)
        else:
            orchestrator.run(root)
    except KeyboardInterrupt:
        if not json_output:
            render_summary(console, tracker.summary())
        typer.secho("\nOptimization stopped by user (Ctrl+C)", fg=typer.colors.YELLOW, err=True)
        raise typer.Exit(code=130)
    except DiscoveryError as exc:
        _fail(str(exc), json_writer)
    finally:
        if exif is not None:
            exif.close()

    if not json_output:
        render_summary(console, tracker.summary())


if __name__ == "__main__":
    app()
