import logging
from pathlib import Path
from typing import Optional
from rich.console import Console
from rich.logging import RichHandler


def setup_logging(log_path: Path, verbose: bool = False, console: Optional[Console] = None) -> logging.Logger:
    """
    Setup logging configuration for SMO.

    Writes everything to the log file. The console only shows errors,
    unless verbose is on, in which case per-file details are shown too.

    Args:
        log_path: Path to log file (parent directory is created)
        verbose: If True, enable DEBUG level logging on file and console
        console: Optional rich Console shared with the progress display
    """
    log_file = Path(log_path)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    level = logging.DEBUG if verbose else logging.INFO

    file_handler = logging.FileHandler(log_file)
    file_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))

    console_handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        markup=False,
        rich_tracebacks=verbose,
    )
    console_handler.setLevel(logging.DEBUG if verbose else logging.ERROR)

    logging.basicConfig(
        level=level,
        format='%(message)s',
        handlers=[file_handler, console_handler],
        force=True  # Override any existing configuration
    )

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized: {log_file} (verbose={'ON' if verbose else 'OFF'})")

    return logger
