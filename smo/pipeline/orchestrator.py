"""Pipeline orchestrator for media optimization.

Coordinates discovery, the per-file decision pipeline and the shared
per-root state. Uses the EventBus for every lifecycle notification so the
pipeline layer never depends on the UI layer.

Per-file pipeline (one worker, strictly ordered):
    CheckState -> {cached | Optimize} -> SizeCheck -> {Replace | Keep}
    -> RecordUpdated -> done
Any failure before the size check leaves the original untouched and writes
no record. The temp output is removed on every exit path.

With ``output_dir`` set the tree is mirrored there instead: originals stay
untouched, every decided file (optimized or kept) is copied to its mirrored
path and the per-root state is neither read nor written.

Dispatch uses the "submit-on-demand" pattern: at most
prefetch_factor * workers futures are queued at a time, and an admission
gate keeps at most ``workers`` files inside the pipeline.
"""

import os
import time
import shutil
import logging
import threading
import concurrent.futures
from collections import deque
from pathlib import Path
from typing import Dict, List, Optional
from smo.config.models import AppConfig
from smo.domain.errors import OptimizerError, ProcessingError, ProcessingInterrupted, StateIOError
from smo.domain.events import (
    DiscoveryStarted, DiscoveryFinished, JobStarted, JobCompleted, JobSkipped,
    JobFailed, ProcessingFinished, ShutdownRequested,
)
from smo.domain.models import (
    JobStatus, MediaFile, MediaKind, OptimizationJob, OptimizedOutput, ProcessedRecord,
)
from smo.infrastructure.event_bus import EventBus
from smo.infrastructure.file_scanner import FileScanner
from smo.infrastructure.state_store import StateStore
from smo.pipeline.decision import reduction_percent, should_replace
from smo.pipeline.processors import BaseProcessor, discard, temp_output_path


class Orchestrator:
    """Media optimization pipeline orchestrator.

    Args:
        config: AppConfig with run parameters.
        event_bus: EventBus for publishing job lifecycle events.
        file_scanner: FileScanner for discovering media files.
        state_store: StateStore loaded for the root being processed.
        processors: dispatch table MediaKind -> processor.
    """

    def __init__(
        self,
        config: AppConfig,
        event_bus: EventBus,
        file_scanner: FileScanner,
        state_store: StateStore,
        processors: Dict[MediaKind, BaseProcessor],
    ):
        self.config = config
        self.event_bus = event_bus
        self.file_scanner = file_scanner
        self.state_store = state_store
        self.processors = processors
        self.logger = logging.getLogger(__name__)

        # Admission gate
        self._current_max_threads = config.general.workers
        self._active_threads = 0
        self.peak_active_threads = 0
        self._thread_lock = threading.Condition()

        self._shutdown_requested = False
        self._shutdown_event = threading.Event()  # Signal running tools to stop
        self._root: Optional[Path] = None

        self.event_bus.subscribe(ShutdownRequested, self._on_shutdown_request)

    def _on_shutdown_request(self, event: ShutdownRequested):
        self.request_shutdown()

    def request_shutdown(self):
        """Stops dispatching new files; files already in the pipeline finish."""
        with self._thread_lock:
            self._shutdown_requested = True
            self._thread_lock.notify_all()
        self.logger.info("Shutdown requested: no new files will be started")

    def _replace(self, original: Path, temp: Path):
        try:
            shutil.copymode(original, temp)
        except OSError as e:
            self.logger.warning(f"COPYMODE_FAIL: {original.name}: {e}")
        os.replace(temp, original)

    def _output_target(self, file: MediaFile) -> Optional[Path]:
        """Where ``file`` lands in output mode, mirroring its place under the root."""
        output_dir = self.config.general.output_dir
        if output_dir is None:
            return None
        return Path(output_dir).resolve() / file.path.relative_to(self._root)

    def _export(self, original: Path, source: Path, target: Path):
        """Copies ``source`` to ``target`` through a staging file beside the target."""
        target.parent.mkdir(parents=True, exist_ok=True)
        staging = temp_output_path(target)
        try:
            shutil.copyfile(source, staging)
            self._replace(original, staging)
        except OSError:
            discard(staging)
            raise

    def _record(self, file: MediaFile, optimized_size: int):
        try:
            mtime = int(file.path.stat().st_mtime)
        except OSError as e:
            # The file was already swapped; only the cache entry is lost
            self.logger.error(f"STATE_WRITE_FAIL: {file.path.name}: {e}")
            return
        record = ProcessedRecord.build(
            file.path,
            modified_time=mtime,
            original_size=file.size_bytes,
            optimized_size=optimized_size,
        )
        self.state_store.record(file.path, record)
        try:
            self.state_store.flush()
        except StateIOError as e:
            # The decision already happened on disk; the next run re-checks it
            self.logger.error(f"STATE_WRITE_FAIL: {file.path.name}: {e}")

    def _process_file(self, media_file: MediaFile, index: int = 0, total: int = 0) -> Optional[OptimizationJob]:
        """Runs one file through the pipeline. Never raises for per-file errors."""
        filename = media_file.path.name
        general = self.config.general
        dry_run = general.dry_run

        with self._thread_lock:
            while self._active_threads >= self._current_max_threads and not self._shutdown_requested:
                self._thread_lock.wait()

            if self._shutdown_requested:
                self.logger.debug(f"PROCESS_SKIP: {filename} (shutdown)")
                return None

            self._active_threads += 1
            self.peak_active_threads = max(self.peak_active_threads, self._active_threads)

        start_time = time.monotonic()
        job = OptimizationJob(source_file=media_file, status=JobStatus.PROCESSING, dry_run=dry_run)
        output: Optional[OptimizedOutput] = None

        try:
            self.logger.debug(f"PROCESS_START: {filename} (thread {threading.get_ident()})")
            file = media_file.refresh()
            job.source_file = file
            self.event_bus.publish(JobStarted(job=job, index=index, total=total))

            target = self._output_target(file)
            if target is None and self.state_store.is_processed(file.path, file.mtime):
                job.status = JobStatus.CACHED
                self.logger.debug(f"CACHED: {filename}")
                self.event_bus.publish(JobSkipped(job=job))
                return job
            if target is not None and general.keep_processed and target.exists():
                job.status = JobStatus.CACHED
                self.logger.debug(f"CACHED: {filename} (output exists)")
                self.event_bus.publish(JobSkipped(job=job))
                return job

            skip_video = file.kind == MediaKind.VIDEO and general.skip_video_compression
            if file.size_bytes == 0 or skip_video:
                job.status = JobStatus.KEPT_ORIGINAL
                job.optimized_size = file.size_bytes
                reason = "empty file" if file.size_bytes == 0 else "video compression skipped"
                self.logger.info(f"KEEP_ORIGINAL: {filename} ({reason})")
                if not dry_run:
                    if target is not None:
                        self._export(file.path, file.path, target)
                    elif not skip_video:
                        # A skipped video stays eligible for a later run with compression on
                        self._record(file, optimized_size=file.size_bytes)
                self.event_bus.publish(JobCompleted(job=job, original_size=file.size_bytes))
                return job

            processor = self.processors.get(file.kind)
            if processor is None:
                raise ProcessingError(file.path, f"no processor for {file.kind.value} files")

            output = processor.optimize(file, shutdown_event=self._shutdown_event)
            job.tool = output.tool
            job.optimized_size = output.size_bytes
            job.reduction_percent = reduction_percent(file.size_bytes, output.size_bytes)

            if should_replace(file.size_bytes, output.size_bytes, general.threshold):
                current = file.refresh()
                if (current.size_bytes, current.mtime) != (file.size_bytes, file.mtime):
                    raise ProcessingError(file.path, "file changed while being optimized")
                if not dry_run:
                    if target is None:
                        self._replace(file.path, output.temp_path)
                        output = None
                    else:
                        self._export(file.path, output.temp_path, target)
                job.status = JobStatus.REPLACED
                self.logger.info(
                    f"REPLACE: {filename} {file.size_bytes}->{job.optimized_size} "
                    f"(-{job.reduction_percent:.1f}%) tool={job.tool}{' [dry-run]' if dry_run else ''}"
                )
            else:
                if not dry_run and target is not None:
                    self._export(file.path, file.path, target)
                job.status = JobStatus.KEPT_ORIGINAL
                self.logger.info(
                    f"KEEP_ORIGINAL: {filename} {file.size_bytes}->{job.optimized_size} "
                    f"below threshold {general.threshold:.2f} tool={job.tool}"
                )

            if not dry_run and target is None:
                self._record(file, optimized_size=job.optimized_size)

            job.duration_seconds = time.monotonic() - start_time
            self.event_bus.publish(JobCompleted(job=job, original_size=file.size_bytes))
            return job

        except ProcessingInterrupted as e:
            job.status = JobStatus.INTERRUPTED
            job.error_message = e.message
            self.event_bus.publish(JobFailed(job=job, error_message=job.error_message))
            return job
        except (OptimizerError, OSError) as e:
            job.status = JobStatus.FAILED
            job.error_message = str(e)
            self.logger.warning(f"PROCESS_FAIL: {media_file.path}: {e}")
            self.event_bus.publish(JobFailed(job=job, error_message=job.error_message))
            return job
        except Exception as e:
            # Log exception but don't crash the worker
            self.logger.exception(f"Exception processing {media_file.path}: {e}")
            job.status = JobStatus.FAILED
            job.error_message = f"Exception: {e}"
            self.event_bus.publish(JobFailed(job=job, error_message=job.error_message))
            return job
        finally:
            if output is not None:
                discard(output.temp_path)
            if job.duration_seconds is None:
                job.duration_seconds = time.monotonic() - start_time
            self.logger.debug(f"PROCESS_END: {filename} status={job.status.value} elapsed={job.duration_seconds:.2f}s")
            with self._thread_lock:
                self._active_threads -= 1
                self._thread_lock.notify_all()

    def _finish_state(self, discovered: List[MediaFile], complete: bool):
        # Output mode never touches the in-place cache
        if self.config.general.dry_run or self.config.general.output_dir is not None:
            return
        if complete:
            self.state_store.cleanup(f.path for f in discovered)
        try:
            self.state_store.flush()
        except StateIOError as e:
            self.logger.error(f"STATE_WRITE_FAIL: {e}")

    def run(self, root: Path) -> List[OptimizationJob]:
        """Processes every media file under ``root``.

        Raises DiscoveryError if the root cannot be scanned. Returns the
        terminal job of each file that entered the pipeline.
        """
        run_start = time.monotonic()
        root = Path(root)
        self._root = root.resolve()
        self.logger.info(f"Discovery started: {root}")
        self.event_bus.publish(DiscoveryStarted(directory=root))

        files = list(self.file_scanner.scan(root))
        images = sum(1 for f in files if f.kind == MediaKind.IMAGE)
        self.logger.info(f"Discovery finished: found={len(files)}, images={images}, videos={len(files) - images}")
        self.event_bus.publish(DiscoveryFinished(files_found=len(files), images=images, videos=len(files) - images))

        results: List[OptimizationJob] = []
        total = len(files)
        pending = deque(enumerate(files, start=1))
        in_flight = {}  # future -> MediaFile

        with concurrent.futures.ThreadPoolExecutor(max_workers=self.config.general.workers) as executor:
            def submit_batch():
                """Submit files up to max_inflight limit"""
                max_inflight = self.config.general.prefetch_factor * self._current_max_threads
                while len(in_flight) < max_inflight and pending and not self._shutdown_requested:
                    index, media_file = pending.popleft()
                    future = executor.submit(self._process_file, media_file, index, total)
                    in_flight[future] = media_file

            try:
                submit_batch()

                while in_flight:
                    done, _ = concurrent.futures.wait(
                        set(in_flight.keys()),
                        timeout=1.0,
                        return_when=concurrent.futures.FIRST_COMPLETED
                    )

                    for future in done:
                        try:
                            job = future.result()
                            if job is not None:
                                results.append(job)
                        except Exception as e:
                            self.logger.error(f"Future failed with exception: {e}")
                        del in_flight[future]

                    submit_batch()

            except KeyboardInterrupt:
                self.logger.info("Ctrl+C detected - stopping new tasks and interrupting active jobs...")

                # Signal running tools to stop, then stop dispatching
                self._shutdown_event.set()
                self.request_shutdown()

                for future in list(in_flight.keys()):
                    if not future.done():
                        future.cancel()

                # Workers only leave the pipeline in a terminal state; a rename
                # already in progress completes before its worker returns.
                self.logger.info("Waiting for active tools to terminate...")
                concurrent.futures.wait(list(in_flight.keys()))
                for future in in_flight:
                    if not future.cancelled() and future.exception() is None and future.result() is not None:
                        results.append(future.result())

                executor.shutdown(wait=False, cancel_futures=True)
                self._finish_state(files, complete=False)
                self.event_bus.publish(ProcessingFinished(
                    interrupted=True,
                    duration_seconds=time.monotonic() - run_start,
                    historical=self.state_store.stats(self.config.general.threshold),
                ))
                self.logger.info("Shutdown complete")
                raise

        interrupted = self._shutdown_requested or bool(pending)
        self._finish_state(files, complete=not interrupted)
        self.event_bus.publish(ProcessingFinished(
            interrupted=interrupted,
            duration_seconds=time.monotonic() - run_start,
            historical=self.state_store.stats(self.config.general.threshold),
        ))
        self.logger.info(f"All files processed ({len(results)} handled), exiting")
        return results
