import time
import logging
import subprocess
import threading
from pathlib import Path
from typing import List, Optional
from smo.domain.errors import ProcessingError, ProcessingInterrupted, ToolTimeoutError

logger = logging.getLogger(__name__)

POLL_INTERVAL_S = 0.2
TERMINATE_GRACE_S = 3.0


def _stop(process: subprocess.Popen):
    process.terminate()
    try:
        process.wait(timeout=TERMINATE_GRACE_S)
    except subprocess.TimeoutExpired:
        process.kill()
        process.wait()


def _tail(text: str, limit: int = 300) -> str:
    text = (text or "").strip()
    return text[-limit:] if len(text) > limit else text


def run_tool(
    cmd: List[str],
    source: Path,
    tool: str,
    timeout_s: float,
    shutdown_event: Optional[threading.Event] = None,
) -> str:
    """Runs one external tool invocation and returns its stdout.

    The process is polled so a run-level shutdown can stop it early. Raises
    ToolTimeoutError when ``timeout_s`` elapses, ProcessingInterrupted on
    shutdown and ProcessingError on a non-zero exit status.
    """
    filename = source.name
    logger.debug(f"TOOL_RUN: {filename} {tool}: {' '.join(cmd)}")
    start = time.monotonic()
    deadline = start + timeout_s

    try:
        process = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
        )
    except OSError as e:
        raise ProcessingError(source, f"{tool} could not be started: {e}") from e

    try:
        while True:
            if shutdown_event is not None and shutdown_event.is_set():
                logger.info(f"TOOL_INTERRUPTED: {filename} {tool} (shutdown signal)")
                _stop(process)
                raise ProcessingInterrupted(source)

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning(f"TOOL_TIMEOUT: {filename} {tool} after {timeout_s:g}s")
                _stop(process)
                raise ToolTimeoutError(source, tool, timeout_s)

            try:
                stdout, stderr = process.communicate(timeout=min(POLL_INTERVAL_S, remaining))
                break
            except subprocess.TimeoutExpired:
                continue
    except KeyboardInterrupt:
        _stop(process)
        raise

    elapsed = time.monotonic() - start
    if process.returncode != 0:
        logger.debug(f"TOOL_END: {filename} {tool} code={process.returncode} elapsed={elapsed:.2f}s")
        detail = _tail(stderr) or _tail(stdout)
        message = f"{tool} exited with code {process.returncode}"
        if detail:
            message = f"{message}: {detail}"
        raise ProcessingError(source, message)

    logger.debug(f"TOOL_END: {filename} {tool} code=0 elapsed={elapsed:.2f}s")
    return stdout
