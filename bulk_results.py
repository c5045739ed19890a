"""
Outcome sets of a finished ingest job.
"""
from dataclasses import dataclass, field
from typing import Dict, List

from bulk_client import BulkJobClient, ResultCategory

Rows = List[Dict[str, str]]


@dataclass
class JobResults:
    successful: Rows = field(default_factory=list)
    failed: Rows = field(default_factory=list)
    unprocessed: Rows = field(default_factory=list)

    @property
    def created_ids(self) -> List[str]:
        """Ids of records the job created (not those it updated)."""
        return [row["sf__Id"] for row in self.successful
                if row.get("sf__Id") and row.get("sf__Created", "").lower() == "true"]

    @property
    def errors(self) -> List[Dict[str, str]]:
        return [{"record": row.get("sf__Id") or "Unknown", "error": row.get("sf__Error", "Unknown error")}
                for row in self.failed]


class ResultFetcher:
    """Downloads the successful, failed and unprocessed rows of an ingest job.

    Successful rows carry sf__Id and sf__Created, failed rows carry sf__Error,
    unprocessed rows are the original CSV rows the org never attempted.
    """

    def __init__(self, client: BulkJobClient):
        self.client = client

    def successful(self, job_id: str) -> Rows:
        return self.client.fetch_categorized(job_id, ResultCategory.SUCCESSFUL)

    def failed(self, job_id: str) -> Rows:
        return self.client.fetch_categorized(job_id, ResultCategory.FAILED)

    def unprocessed(self, job_id: str) -> Rows:
        return self.client.fetch_categorized(job_id, ResultCategory.UNPROCESSED)

    def fetch_all(self, job_id: str) -> JobResults:
        return JobResults(
            successful=self.successful(job_id),
            failed=self.failed(job_id),
            unprocessed=self.unprocessed(job_id),
        )
