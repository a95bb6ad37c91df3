import logging
from pathlib import Path
from typing import Optional
from smo.config.models import AppConfig
from smo.domain.events import (
    DiscoveryStarted, DiscoveryFinished,
    JobStarted, JobCompleted, JobSkipped, JobFailed,
    ProcessingFinished,
)
from smo.domain.models import JobStatus
from smo.infrastructure.event_bus import EventBus
from smo.ui.dashboard import ProgressDisplay, format_size
from smo.ui.json_output import JsonEventWriter
from smo.ui.state import ProgressTracker

logger = logging.getLogger(__name__)


class UIManager:
    """Subscribes to EventBus and updates the tracker and outputs."""

    def __init__(
        self,
        bus: EventBus,
        tracker: ProgressTracker,
        config: AppConfig,
        display: Optional[ProgressDisplay] = None,
        json_writer: Optional[JsonEventWriter] = None,
    ):
        self.bus = bus
        self.tracker = tracker
        self.config = config
        self.display = display
        self.json_writer = json_writer
        self.root: Optional[Path] = None
        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.bus.subscribe(DiscoveryStarted, self.on_discovery_started)
        self.bus.subscribe(DiscoveryFinished, self.on_discovery_finished)
        self.bus.subscribe(JobStarted, self.on_job_started)
        self.bus.subscribe(JobCompleted, self.on_job_completed)
        self.bus.subscribe(JobSkipped, self.on_job_skipped)
        self.bus.subscribe(JobFailed, self.on_job_failed)
        self.bus.subscribe(ProcessingFinished, self.on_processing_finished)

    def on_discovery_started(self, event: DiscoveryStarted):
        self.root = event.directory

    def on_discovery_finished(self, event: DiscoveryFinished):
        logger.debug(f"UI: discovery counters: found={event.files_found} images={event.images} videos={event.videos}")
        self.tracker.set_total(event.files_found)
        if self.display:
            self.display.set_total(event.files_found)
        if self.json_writer:
            self.json_writer.start(self.root or Path("."), event.files_found, self.config)

    def on_job_started(self, event: JobStarted):
        self.tracker.file_started()
        if self.json_writer:
            file = event.job.source_file
            self.json_writer.file_start(file.path, file.size_bytes, event.index, event.total)

    def _advance(self, message: str):
        if self.display:
            self.display.advance(message)
        if self.json_writer:
            self.json_writer.progress(self.tracker.summary(), self.tracker.files_done)

    def on_job_completed(self, event: JobCompleted):
        job = event.job
        optimized = job.optimized_size or 0
        if job.status == JobStatus.REPLACED:
            self.tracker.file_replaced(event.original_size, optimized)
            message = f"{job.source_file.path.name} -{job.reduction_percent:.1f}% ({format_size(event.original_size - optimized)})"
        else:
            self.tracker.file_kept(job)
            message = f"{job.source_file.path.name} kept"
        if self.json_writer:
            self.json_writer.file_complete(
                job.source_file.path,
                original_size=event.original_size,
                optimized_size=optimized,
                reduction_percent=job.reduction_percent,
                skipped=job.status != JobStatus.REPLACED,
            )
        self._advance(message)

    def on_job_skipped(self, event: JobSkipped):
        self.tracker.file_cached()
        file = event.job.source_file
        if self.json_writer:
            self.json_writer.file_complete(
                file.path,
                original_size=file.size_bytes,
                optimized_size=file.size_bytes,
                reduction_percent=0.0,
                skipped=True,
            )
        self._advance(f"{file.path.name} cached")

    def on_job_failed(self, event: JobFailed):
        job = event.job
        if job.status == JobStatus.INTERRUPTED:
            self.tracker.file_interrupted()
        else:
            self.tracker.file_failed()
        if self.json_writer:
            file = job.source_file
            self.json_writer.file_complete(
                file.path,
                original_size=file.size_bytes,
                optimized_size=file.size_bytes,
                reduction_percent=0.0,
                skipped=True,
                error=event.error_message,
            )
        self._advance(f"{job.source_file.path.name} failed")

    def on_processing_finished(self, event: ProcessingFinished):
        self.tracker.finish(event.duration_seconds, event.interrupted, event.historical)
        if self.json_writer:
            self.json_writer.complete(self.tracker.summary())
