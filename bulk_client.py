"""
Bulk API 2.0 job client.

One method per HTTP call against the ingest and query job collections:
create, upload, close, abort, status, results, delete and list. Nothing here
sequences calls or retries them; see bulk_upload.py and bulk_query.py.
"""
import csv
import io
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from bulk_errors import JobCreationError, RemoteError
from org_connection import Session

logger = logging.getLogger(__name__)

LOCATOR_HEADER = "Sforce-Locator"
# Sent in the locator header when there are no more result pages
NO_MORE_PAGES = "null"
DEFAULT_MAX_RECORDS = 50000


class Operation(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    UPSERT = "upsert"
    DELETE = "delete"
    HARD_DELETE = "hardDelete"
    QUERY = "query"
    QUERY_ALL = "queryAll"

    def __str__(self):
        return self.value

    @property
    def is_query(self) -> bool:
        return self in (Operation.QUERY, Operation.QUERY_ALL)


class JobState(str, Enum):
    OPEN = "Open"
    UPLOAD_COMPLETE = "UploadComplete"
    IN_PROGRESS = "InProgress"
    JOB_COMPLETE = "JobComplete"
    FAILED = "Failed"
    ABORTED = "Aborted"

    def __str__(self):
        return self.value


TERMINAL_STATES = frozenset(state.value for state in (JobState.JOB_COMPLETE, JobState.FAILED, JobState.ABORTED))


class ResultCategory(str, Enum):
    SUCCESSFUL = "successfulResults"
    FAILED = "failedResults"
    UNPROCESSED = "unprocessedrecords"


@dataclass(frozen=True)
class JobSpec:
    """What to create: an ingest job for ``sobject`` or a query job for ``query``.

    Content format is always CSV with LF line endings and comma delimiters.
    """
    operation: Operation
    sobject: Optional[str] = None
    external_id_field: Optional[str] = None
    query: Optional[str] = None

    def __post_init__(self):
        operation = Operation(self.operation)
        object.__setattr__(self, "operation", operation)
        if operation.is_query:
            if not self.query or not self.query.strip():
                raise ValueError(f"{operation} jobs require a SOQL query")
            return
        if not self.sobject:
            raise ValueError(f"{operation} jobs require an object name")
        if operation is Operation.UPSERT and not self.external_id_field:
            raise ValueError("upsert jobs require an external id field")
        if operation is not Operation.UPSERT and self.external_id_field:
            raise ValueError("external id field is only valid for upsert jobs")

    def to_payload(self) -> Dict[str, str]:
        if self.operation.is_query:
            return {
                "operation": self.operation.value,
                "query": self.query,
                "columnDelimiter": "COMMA",
                "lineEnding": "LF",
            }
        payload = {
            "object": self.sobject,
            "operation": self.operation.value,
            "contentType": "CSV",
            "lineEnding": "LF",
            "columnDelimiter": "COMMA",
        }
        if self.external_id_field:
            payload["externalIdFieldName"] = self.external_id_field
        return payload


@dataclass(frozen=True)
class Job:
    """A snapshot of remote job info. ``state`` is whatever the org reported."""
    id: str
    state: str
    operation: Optional[str] = None
    sobject: Optional[str] = None
    created_date: Optional[str] = None
    records_processed: int = 0
    records_failed: int = 0
    error_message: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def is_terminal(self) -> bool:
        return str(self.state) in TERMINAL_STATES

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Job":
        return cls(
            id=payload.get("id"),
            state=payload.get("state"),
            operation=payload.get("operation"),
            sobject=payload.get("object"),
            created_date=payload.get("createdDate"),
            records_processed=int(payload.get("numberRecordsProcessed") or 0),
            records_failed=int(payload.get("numberRecordsFailed") or 0),
            error_message=payload.get("errorMessage") or None,
            raw=payload,
        )


@dataclass(frozen=True)
class ResultPage:
    cursor: str
    rows: List[Dict[str, str]]
    next_cursor: str = ""

    @property
    def has_more(self) -> bool:
        return bool(self.next_cursor) and self.next_cursor != NO_MORE_PAGES


def parse_csv_rows(text: str) -> List[Dict[str, str]]:
    """Parse a CSV body (header row + data rows) into dicts. Empty body gives []."""
    if not text or not text.strip():
        return []
    return list(csv.DictReader(io.StringIO(text)))


class BulkJobClient:
    """Issues the individual Bulk API 2.0 job calls for one org session.

    Args:
        session: Read-only org session (instance URL, API version, token)
        transport: Object with ``request(method, url, headers=, data=, params=)``
                   returning status_code / headers / content without raising on
                   HTTP errors (see http_transport.RequestsTransport)
    """

    def __init__(self, session: Session, transport):
        self.session = session
        self.transport = transport

    # ---------------------------
    # URL building
    # ---------------------------
    def collection_url(self, is_query_job: bool = False) -> str:
        return self.session.query_url if is_query_job else self.session.ingest_url

    def job_url(self, job_id: str, is_query_job: bool = False) -> str:
        return f"{self.collection_url(is_query_job)}/{job_id}"

    def _headers(self, content_type: Optional[str] = None, accept: str = "application/json") -> Dict[str, str]:
        headers = {
            "Authorization": self.session.auth_header,
            "Accept": accept,
        }
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    def _send(self, method: str, url: str, headers: Dict[str, str], data: Any = None,
              params: Optional[Dict[str, Any]] = None):
        response = self.transport.request(method, url, headers=headers, data=data, params=params)
        if response.status_code >= 300:
            raise RemoteError(response.status_code, url, response.content.decode("utf-8", "replace"))
        return response

    def _send_json(self, method: str, url: str, body: Optional[Dict[str, Any]] = None,
                   params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        data = json.dumps(body) if body is not None else None
        content_type = "application/json; charset=UTF-8" if body is not None else None
        response = self._send(method, url, self._headers(content_type), data=data, params=params)
        if not response.content:
            return {}
        try:
            payload = json.loads(response.content)
        except ValueError as e:
            raise RemoteError(response.status_code, url,
                              response.content.decode("utf-8", "replace")) from e
        if not isinstance(payload, dict):
            raise RemoteError(response.status_code, url, response.content.decode("utf-8", "replace"))
        return payload

    def _send_csv(self, url: str, params: Optional[Dict[str, Any]] = None):
        response = self._send("GET", url, self._headers(accept="text/csv"), params=params)
        try:
            rows = parse_csv_rows(response.content.decode("utf-8"))
        except (UnicodeDecodeError, csv.Error) as e:
            raise RemoteError(response.status_code, url,
                              response.content.decode("utf-8", "replace")) from e
        return response, rows

    # ---------------------------
    # Job lifecycle
    # ---------------------------
    def create(self, spec: JobSpec) -> Job:
        """Create an ingest or query job.

        Ingest jobs must come back Open. Query jobs start processing right away,
        so any non-terminal state is accepted for them.

        Raises:
            RemoteError: the POST returned status >= 300
            JobCreationError: the job came back in an unexpected state
        """
        is_query_job = spec.operation.is_query
        payload = self._send_json("POST", self.collection_url(is_query_job), spec.to_payload())
        job = Job.from_payload(payload)
        if is_query_job:
            if job.is_terminal:
                raise JobCreationError(job, "a non-terminal state")
        elif job.state != JobState.OPEN:
            raise JobCreationError(job, JobState.OPEN.value)
        logger.info("Created %s job %s (%s)", spec.operation, job.id, job.state)
        return job

    def upload_data(self, job_id: str, payload: Union[str, bytes]):
        """Upload the CSV payload for an Open ingest job."""
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        url = f"{self.job_url(job_id)}/batches"
        self._send("PUT", url, self._headers("text/csv; charset=UTF-8"), data=payload)
        logger.info("Uploaded %d bytes to job %s", len(payload), job_id)

    def close(self, job_id: str) -> Job:
        """Mark the upload complete so the org starts processing."""
        payload = self._send_json("PATCH", self.job_url(job_id), {"state": JobState.UPLOAD_COMPLETE.value})
        return Job.from_payload(payload)

    def abort(self, job_id: str, is_query_job: bool = False) -> Job:
        payload = self._send_json("PATCH", self.job_url(job_id, is_query_job), {"state": JobState.ABORTED.value})
        return Job.from_payload(payload)

    def get_status(self, job_id: str, is_query_job: bool = False) -> Job:
        return Job.from_payload(self._send_json("GET", self.job_url(job_id, is_query_job)))

    def delete_job(self, job_id: str, is_query_job: bool = False):
        self._send("DELETE", self.job_url(job_id, is_query_job), self._headers())

    def list_jobs(self, is_query_job: bool = False, **filters) -> List[Job]:
        """List jobs in the ingest (or query) collection, following nextRecordsUrl.

        Args:
            is_query_job: list query jobs instead of ingest jobs
            **filters: query parameters such as jobType, concurrencyMode,
                       isPkChunkingEnabled
        """
        params = {key: value for key, value in filters.items() if value is not None}
        url = self.collection_url(is_query_job)
        jobs = []
        while True:
            payload = self._send_json("GET", url, params=params or None)
            jobs.extend(Job.from_payload(record) for record in payload.get("records", []))
            next_url = payload.get("nextRecordsUrl")
            if payload.get("done", True) or not next_url:
                return jobs
            # nextRecordsUrl is relative to the instance and already carries the filters
            url = f"{self.session.instance_url.rstrip('/')}{next_url}"
            params = None

    # ---------------------------
    # Results
    # ---------------------------
    def fetch_result_page(self, job_id: str, cursor: str = "",
                          max_records: int = DEFAULT_MAX_RECORDS) -> ResultPage:
        """Fetch one page of query results.

        Args:
            job_id: A JobComplete query job
            cursor: Locator returned by the previous page, "" for the first page
            max_records: Upper bound on rows in this page

        Returns:
            ResultPage with the parsed rows and the locator for the next page
        """
        params = {"maxRecords": max_records}
        if cursor:
            params["locator"] = cursor
        url = f"{self.job_url(job_id, is_query_job=True)}/results"
        response, rows = self._send_csv(url, params)
        next_cursor = response.headers.get(LOCATOR_HEADER) or ""
        return ResultPage(cursor=cursor, rows=rows, next_cursor=next_cursor)

    def fetch_categorized(self, job_id: str, category: Union[ResultCategory, str]) -> List[Dict[str, str]]:
        """Fetch the successful, failed or unprocessed rows of an ingest job."""
        category = ResultCategory(category)
        url = f"{self.job_url(job_id)}/{category.value}"
        _, rows = self._send_csv(url)
        return rows
