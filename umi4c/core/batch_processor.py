"""
Batch Processing

Run independent per-chromosome, per-sample and per-group tasks on a
thread pool:
- One job record per task key
- Barrier join before any result is used
- Deterministic merge by sorted task key
- Failures re-raised after the barrier, domain errors with their own type
"""

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Hashable, List, Optional, Tuple

from .exceptions import PipelineError, UMI4CError, validate_numeric_param

logger = logging.getLogger(__name__)


class JobStatus(Enum):
    """Job execution status."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Job:
    """Bookkeeping for one task of a batch."""

    key: Hashable
    name: str
    status: JobStatus = JobStatus.PENDING
    created_at: str = ""
    started_at: str = ""
    completed_at: str = ""
    elapsed: float = 0.0
    error: str = ""

    def __post_init__(self):
        if not self.created_at:
            self.created_at = datetime.now().isoformat()

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["key"] = str(self.key)
        d["status"] = self.status.value
        return d


class BatchError(PipelineError):
    """Raised after the barrier when one or more tasks of a batch failed."""

    def __init__(self, name: str, failures: Dict[Hashable, BaseException]):
        keys = ", ".join(f"{k!s}: {v}" for k, v in failures.items())
        super().__init__(f"{len(failures)} task(s) failed in batch '{name}' ({keys})")
        self.failures = failures


class BatchProcessor:
    """
    Execute a mapping of independent tasks and merge the results.

    Each task is a ``(callable, args)`` pair keyed by a sortable task key
    (a chromosome name, a sample id, a group id). Tasks never share
    mutable state; each returns a private result. The processor waits
    for every task before merging so that completion order cannot change
    the outcome.

    Example:
        >>> processor = BatchProcessor(max_workers=2)
        >>> processor.run({"b": (len, ("xy",)), "a": (len, ("x",))})
        {'a': 1, 'b': 2}
    """

    def __init__(self, max_workers: int = 4, name: str = "batch"):
        validate_numeric_param(max_workers, "max_workers", min_val=1)
        self.max_workers = int(max_workers)
        self.name = name
        self.jobs: Dict[Hashable, Job] = {}

    def run(
        self,
        tasks: Dict[Hashable, Tuple[Callable, tuple]],
        sort_key: Optional[Callable[[Hashable], Any]] = None,
    ) -> Dict[Hashable, Any]:
        """Run all tasks and return ``{key: result}`` in sorted key order.

        Args:
            tasks: Mapping of task key to ``(function, args)``.
            sort_key: Optional key function for ordering the merged result
                (defaults to natural ordering of the keys).

        Returns:
            Dict of results ordered by sorted task key.

        Raises:
            UMI4CError: The first domain error in sorted key order, with
                every failure attached as ``batch_failures``.
            BatchError: If the first failure is any other exception; lists
                every failing task key.
        """
        self.jobs = {key: Job(key=key, name=f"{self.name}:{key}") for key in tasks}
        if not tasks:
            return {}

        results: Dict[Hashable, Any] = {}
        failures: Dict[Hashable, BaseException] = {}

        workers = min(self.max_workers, len(tasks))
        logger.debug(f"Running {len(tasks)} '{self.name}' tasks on {workers} workers")

        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures: Dict[Future, Hashable] = {}
            for key, (func, args) in tasks.items():
                futures[executor.submit(self._run_job, self.jobs[key], func, args)] = key

            for future in as_completed(futures):
                key = futures[future]
                try:
                    results[key] = future.result()
                except Exception as e:
                    failures[key] = e

        # Barrier reached: every task has finished
        if failures:
            for key, err in failures.items():
                logger.error(f"Task {key} in batch '{self.name}' failed: {err}")
            ordered = {k: failures[k] for k in sorted(failures, key=sort_key or _default_sort_key)}
            first = next(iter(ordered.values()))
            if isinstance(first, UMI4CError):
                # Domain errors keep their type; the other failures ride along
                first.batch_failures = ordered
                raise first
            raise BatchError(self.name, ordered) from first

        return {k: results[k] for k in sorted(results, key=sort_key or _default_sort_key)}

    def _run_job(self, job: Job, func: Callable, args: tuple) -> Any:
        job.status = JobStatus.RUNNING
        job.started_at = datetime.now().isoformat()
        t0 = time.perf_counter()
        try:
            result = func(*args)
        except Exception as e:
            job.status = JobStatus.FAILED
            job.error = str(e)
            raise
        finally:
            job.elapsed = time.perf_counter() - t0
            job.completed_at = datetime.now().isoformat()
        job.status = JobStatus.COMPLETED
        return result

    def get_queue_status(self) -> Dict[str, int]:
        """Get counts of the last batch's jobs by status."""
        status_counts = {s.value: 0 for s in JobStatus}
        for job in self.jobs.values():
            status_counts[job.status.value] += 1
        return status_counts

    def failed_jobs(self) -> List[Job]:
        return [j for j in self.jobs.values() if j.status == JobStatus.FAILED]


def _default_sort_key(key: Hashable):
    # Mixed key types fall back to their string form
    return (type(key).__name__, key) if isinstance(key, (int, float)) else ("~", str(key))
