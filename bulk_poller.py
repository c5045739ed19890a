"""
Polls a bulk job until it reaches a terminal state.

The wait between status checks starts at the poll interval and doubles each
round, capped at MAX_POLL_DELAY. Sleeping blocks the calling thread; to give up
early, run the poll in a cancellable worker and abort the remote job yourself,
since the org keeps processing it either way.
"""
import logging
import time
from typing import Callable, Iterator, Optional

from bulk_client import BulkJobClient, Job, JobState
from bulk_errors import JobAbortedError, JobFailedError, JobTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.5
DEFAULT_POLL_TIMEOUT = 300.0
MAX_POLL_DELAY = 2.0


def backoff_delays(poll_interval: float, cap: float = MAX_POLL_DELAY) -> Iterator[float]:
    """Yield the sleep before each re-check: interval, 2x, 4x, ... up to ``cap``."""
    delay = min(poll_interval, cap)
    while True:
        yield delay
        delay = min(delay * 2, cap)


class JobPoller:
    """Drives status checks for a job until JobComplete, Failed or Aborted.

    Args:
        client: BulkJobClient used for status calls
        sleep: Called with a number of seconds to wait (default time.sleep)
        clock: Monotonic clock in seconds (default time.monotonic)
    """

    def __init__(self, client: BulkJobClient, sleep: Optional[Callable[[float], None]] = None,
                 clock: Optional[Callable[[], float]] = None):
        self.client = client
        self.sleep = sleep if sleep is not None else time.sleep
        self.clock = clock if clock is not None else time.monotonic

    def poll(self, job_id: str, is_query_job: bool = False,
             poll_interval: float = DEFAULT_POLL_INTERVAL,
             timeout: float = DEFAULT_POLL_TIMEOUT) -> Job:
        """Wait for the job to finish.

        Args:
            job_id: Job to watch
            is_query_job: Whether the job lives in the query collection
            poll_interval: Initial wait in seconds, also used as a grace period
                           before the first status check
            timeout: Seconds to keep polling, measured from when this call starts

        Returns:
            The JobComplete job info

        Raises:
            JobFailedError: the job ended Failed
            JobAbortedError: the job ended Aborted
            JobTimeoutError: the job was still running after ``timeout`` seconds
            RemoteError: a status call failed
        """
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        started = self.clock()
        delays = backoff_delays(poll_interval)
        self.sleep(poll_interval)

        while True:
            job = self.client.get_status(job_id, is_query_job)
            elapsed = self.clock() - started
            logger.debug("Job %s state: %s (elapsed: %.1fs)", job_id, job.state, elapsed)

            if job.state == JobState.JOB_COMPLETE:
                logger.info("Job %s completed: %d processed, %d failed",
                            job_id, job.records_processed, job.records_failed)
                return job
            if job.state == JobState.FAILED:
                raise JobFailedError(job)
            if job.state == JobState.ABORTED:
                raise JobAbortedError(job)
            if elapsed > timeout:
                raise JobTimeoutError(job_id, job.state, elapsed)

            self.sleep(next(delays))
