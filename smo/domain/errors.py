"""Error taxonomy for the optimizer.

Only startup errors (configuration, discovery, required tools) abort a run.
Everything raised while processing a single file is a ``ProcessingError``
or ``MissingDependencyError`` and is isolated to that file by the
orchestrator.
"""

from pathlib import Path
from typing import Optional


class OptimizerError(Exception):
    """Base class for all optimizer errors."""


class MissingDependencyError(OptimizerError):
    def __init__(self, tool: str, message: Optional[str] = None):
        self.tool = tool
        super().__init__(message or f"Required tool not available: {tool}")


class DiscoveryError(OptimizerError):
    def __init__(self, root: Path, reason: str):
        self.root = root
        self.reason = reason
        super().__init__(f"Cannot scan {root}: {reason}")


class ProcessingError(OptimizerError):
    def __init__(self, path: Path, message: str):
        self.path = path
        self.message = message
        super().__init__(f"{path.name}: {message}")


class ToolTimeoutError(ProcessingError):
    def __init__(self, path: Path, tool: str, timeout_s: float):
        self.tool = tool
        self.timeout_s = timeout_s
        super().__init__(path, f"{tool} timed out after {timeout_s:g}s")


class MetadataPreservationError(ProcessingError):
    pass


class ProcessingInterrupted(ProcessingError):
    def __init__(self, path: Path, message: str = "Interrupted by user (Ctrl+C)"):
        super().__init__(path, message)


class StateIOError(OptimizerError):
    def __init__(self, state_path: Path, reason: str):
        self.state_path = state_path
        self.reason = reason
        super().__init__(f"State file {state_path}: {reason}")
