import os
from pathlib import Path
from smo.domain.errors import (
    MetadataPreservationError, OptimizerError, ProcessingError, ProcessingInterrupted, ToolTimeoutError,
)
from smo.domain.models import (
    JobStatus, MediaFile, MediaKind, OptimizationJob, ProcessedRecord, is_temp_name,
)
from smo.pipeline.processors import temp_output_path


def test_media_file_from_path_and_refresh(tmp_path):
    path = tmp_path / "a.jpg"
    path.write_bytes(b"x" * 10)
    os.utime(path, (1_700_000_000, 1_700_000_000))

    mf = MediaFile.from_path(path, MediaKind.IMAGE)
    assert mf.size_bytes == 10
    assert mf.mtime == 1_700_000_000

    path.write_bytes(b"x" * 25)
    os.utime(path, (1_700_000_500, 1_700_000_500))
    refreshed = mf.refresh()
    assert refreshed.size_bytes == 25
    assert refreshed.mtime == 1_700_000_500
    assert mf.size_bytes == 10


def test_processed_record_reduction():
    record = ProcessedRecord.build(Path("/m/a.jpg"), 1, 1_000_000, 800_000)
    assert record.reduction_percent == 20.0
    assert record.bytes_saved(0.9) == 200_000


def test_processed_record_zero_original():
    record = ProcessedRecord.build(Path("/m/empty.jpg"), 1, 0, 0)
    assert record.reduction_percent == 0.0
    assert record.bytes_saved(0.9) == 0


def test_processed_record_kept_original_saves_nothing():
    record = ProcessedRecord.build(Path("/m/a.jpg"), 1, 1_000_000, 950_000)
    assert record.optimized_size == 950_000
    assert record.bytes_saved(0.9) == 0
    # equality with the threshold keeps the original too
    assert ProcessedRecord.build(Path("/m/b.jpg"), 1, 1000, 900).bytes_saved(0.9) == 0


def test_processed_record_ignores_unknown_keys():
    record = ProcessedRecord.model_validate({
        "path": "/m/a.jpg",
        "modified_time": 5,
        "original_size": 100,
        "optimized_size": 50,
        "reduction_percent": 50.0,
        "processed_at": 7,
        "replaced": True,
        "future_field": "whatever",
    })
    dumped = record.model_dump()
    assert "future_field" not in dumped
    assert "replaced" not in dumped
    assert record.bytes_saved(0.9) == 50


def test_job_defaults(tmp_path):
    path = tmp_path / "v.mp4"
    path.write_bytes(b"v")
    job = OptimizationJob(source_file=MediaFile.from_path(path, MediaKind.VIDEO))
    assert job.status == JobStatus.PENDING
    assert job.optimized_size is None


def test_temp_names_match_generated_names(tmp_path):
    source = tmp_path / "IMG_0001.JPG"
    assert is_temp_name(temp_output_path(source).name)
    assert is_temp_name(".a.jpg.smo-tmp-k2j3_9zq.jpg")
    assert is_temp_name(".Makefile.smo-tmp-abcdefgh")


def test_temp_names_reject_lookalikes():
    assert not is_temp_name("a.jpg")
    assert not is_temp_name(".a.jpg")
    # user files that merely contain the marker
    assert not is_temp_name(".a.jpg.smo-tmp-k2j3.jpg")
    assert not is_temp_name(".a.jpg.smo-tmp-k2j3_9zq.png")
    assert not is_temp_name(".a.jpg.smo-tmp-K2J3_9ZQ.jpg")
    assert not is_temp_name(".a.jpg.smo-tmp-k2j3_9zq.jpg.bak")
    assert not is_temp_name("a.jpg.smo-tmp-k2j3_9zq.jpg")


def test_error_hierarchy():
    path = Path("/m/a.jpg")
    assert issubclass(ProcessingError, OptimizerError)
    assert isinstance(ToolTimeoutError(path, "jpegoptim", 120), ProcessingError)
    assert isinstance(MetadataPreservationError(path, "lost"), ProcessingError)
    assert isinstance(ProcessingInterrupted(path), ProcessingError)
    assert "timed out after 120s" in str(ToolTimeoutError(path, "jpegoptim", 120))
