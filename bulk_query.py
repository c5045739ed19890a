"""
Bulk API 2.0 query workflow: create -> poll -> page through CSV results.
"""
import logging
from typing import Dict, Iterator, List, Optional

from bulk_client import DEFAULT_MAX_RECORDS, BulkJobClient, JobSpec, Operation, ResultPage
from bulk_poller import DEFAULT_POLL_INTERVAL, DEFAULT_POLL_TIMEOUT, JobPoller

logger = logging.getLogger(__name__)


class BulkQueryOrchestrator:
    """Runs a SOQL query as a bulk query job and collects every result row.

    Query jobs hold no uploaded data, so failures are raised as-is without
    aborting the job.
    """

    def __init__(self, client: BulkJobClient, poller: Optional[JobPoller] = None):
        self.client = client
        self.poller = poller if poller is not None else JobPoller(client)

    def iter_pages(self, soql: str, include_deleted: bool = False,
                   poll_interval: float = DEFAULT_POLL_INTERVAL,
                   timeout: float = DEFAULT_POLL_TIMEOUT,
                   max_records_per_page: int = DEFAULT_MAX_RECORDS) -> Iterator[ResultPage]:
        """Create the query job, wait for it, then yield result pages in order.

        The locator from each page is passed to the next request untouched.
        """
        if max_records_per_page <= 0:
            raise ValueError("max_records_per_page must be positive")
        operation = Operation.QUERY_ALL if include_deleted else Operation.QUERY
        job = self.client.create(JobSpec(operation=operation, query=soql))
        self.poller.poll(job.id, True, poll_interval, timeout)

        cursor = ""
        while True:
            page = self.client.fetch_result_page(job.id, cursor, max_records_per_page)
            logger.debug("Job %s: fetched %d rows (locator=%r)", job.id, len(page.rows), page.next_cursor)
            yield page
            if not page.has_more:
                return
            cursor = page.next_cursor

    def run(self, soql: str, include_deleted: bool = False,
            poll_interval: float = DEFAULT_POLL_INTERVAL,
            timeout: float = DEFAULT_POLL_TIMEOUT,
            max_records_per_page: int = DEFAULT_MAX_RECORDS) -> List[Dict[str, str]]:
        """
        Run ``soql`` and return all rows as dicts keyed by column name.

        Args:
            soql: SOQL query text
            include_deleted: Use queryAll to include deleted and archived records
            poll_interval: Initial seconds between status checks
            timeout: Seconds to keep polling before giving up
            max_records_per_page: Page size hint for result downloads

        Raises:
            JobFailedError, JobAbortedError, JobTimeoutError, RemoteError
        """
        rows = []
        for page in self.iter_pages(soql, include_deleted, poll_interval, timeout, max_records_per_page):
            rows.extend(page.rows)
        logger.info("Query returned %d rows", len(rows))
        return rows
