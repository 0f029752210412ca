"""
Tests for the batch processor used by digestion, counting and smoothing.
"""

import threading
import time

import pytest

from umi4c.core.batch_processor import BatchError, BatchProcessor, JobStatus
from umi4c.core.exceptions import DataIntegrityError, InvalidParameterError, PipelineError


def _sleep_then_return(value, delay):
    time.sleep(delay)
    return value


def _fail_with(exc):
    raise exc


class TestBatchProcessor:

    def test_results_ordered_by_key(self):
        """Later keys finish first; the merge order must still follow the keys."""
        tasks = {
            "a": (_sleep_then_return, ("A", 0.05)),
            "b": (_sleep_then_return, ("B", 0.02)),
            "c": (_sleep_then_return, ("C", 0.0)),
        }
        result = BatchProcessor(max_workers=3).run(tasks)
        assert list(result) == ["a", "b", "c"]
        assert list(result.values()) == ["A", "B", "C"]

    def test_same_result_for_any_worker_count(self):
        """Test serial and parallel runs merge to the same result."""
        tasks = {i: (pow, (i, 2)) for i in range(10)}
        serial = BatchProcessor(max_workers=1).run(tasks)
        parallel = BatchProcessor(max_workers=4).run(tasks)
        assert serial == parallel
        assert list(serial) == list(range(10))

    def test_custom_sort_key(self):
        """Test results follow a caller-supplied key order."""
        tasks = {c: (len, (c,)) for c in ["chr10", "chr2", "chr1"]}
        rank = {"chr1": 0, "chr2": 1, "chr10": 2}
        result = BatchProcessor(max_workers=2).run(tasks, sort_key=rank.get)
        assert list(result) == ["chr1", "chr2", "chr10"]

    def test_empty_batch(self):
        """Test an empty batch returns an empty dict."""
        assert BatchProcessor().run({}) == {}

    def test_failure_reported_after_barrier(self):
        """Test a foreign error becomes BatchError once every task finished."""
        finished = []
        lock = threading.Lock()

        def ok(key):
            time.sleep(0.02)
            with lock:
                finished.append(key)
            return key

        def fail(key):
            raise ValueError(f"cannot process {key}")

        tasks = {"s1": (ok, ("s1",)), "s2": (fail, ("s2",)), "s3": (ok, ("s3",))}
        processor = BatchProcessor(max_workers=3, name="count")

        with pytest.raises(BatchError) as exc_info:
            processor.run(tasks)

        # Every other task ran to completion before the batch failed
        assert sorted(finished) == ["s1", "s3"]
        assert "s2" in str(exc_info.value)
        assert "count" in str(exc_info.value)
        assert list(exc_info.value.failures) == ["s2"]
        assert isinstance(exc_info.value, PipelineError)
        assert isinstance(exc_info.value.__cause__, ValueError)

    def test_domain_error_keeps_type(self):
        """Test the first domain error by key is raised as is, with all failures attached."""
        first = DataIntegrityError("sample 'a' is corrupt")
        tasks = {
            "c": (_fail_with, (RuntimeError("boom"),)),
            "a": (_fail_with, (first,)),
            "b": (_sleep_then_return, ("B", 0.01)),
        }
        with pytest.raises(DataIntegrityError) as exc_info:
            BatchProcessor(max_workers=3).run(tasks)

        assert exc_info.value is first
        assert list(exc_info.value.batch_failures) == ["a", "c"]
        assert isinstance(exc_info.value.batch_failures["c"], RuntimeError)

    def test_foreign_error_first_wraps_batch(self):
        """Test BatchError is raised when the first failing key is not a domain error."""
        tasks = {
            "a": (_fail_with, (KeyError("missing"),)),
            "b": (_fail_with, (DataIntegrityError("bad"),)),
        }
        with pytest.raises(BatchError) as exc_info:
            BatchProcessor(max_workers=2).run(tasks)
        assert list(exc_info.value.failures) == ["a", "b"]

    def test_job_status_tracking(self):
        """Test per-task job status after a partly failing batch."""
        def fail():
            raise RuntimeError("boom")

        processor = BatchProcessor(max_workers=2)
        with pytest.raises(BatchError):
            processor.run({"good": (int, ("1",)), "bad": (fail, ())})

        status = processor.get_queue_status()
        assert status["completed"] == 1
        assert status["failed"] == 1
        assert [j.key for j in processor.failed_jobs()] == ["bad"]
        assert processor.jobs["bad"].status == JobStatus.FAILED
        assert processor.jobs["bad"].error == "boom"
        assert processor.jobs["good"].to_dict()["status"] == "completed"

    def test_invalid_worker_count(self):
        """Test a worker count below 1 is rejected."""
        with pytest.raises(InvalidParameterError):
            BatchProcessor(max_workers=0)
