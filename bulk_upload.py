"""
Bulk API 2.0 ingest workflow: create -> upload CSV -> close -> poll.

If anything goes wrong after the job exists, the job is aborted (best effort)
before the original error is re-raised with the operation and object attached.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Union

from bulk_client import BulkJobClient, JobSpec, Operation
from bulk_errors import BulkApiError, BulkJobError
from bulk_poller import DEFAULT_POLL_INTERVAL, DEFAULT_POLL_TIMEOUT, JobPoller

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestSummary:
    job_id: str
    state: str
    operation: str
    sobject: str
    records_processed: int
    records_failed: int

    def to_dict(self) -> dict:
        return {
            "jobId": self.job_id,
            "state": self.state,
            "operation": self.operation,
            "object": self.sobject,
            "recordsProcessed": self.records_processed,
            "recordsFailed": self.records_failed,
        }


class BulkIngestOrchestrator:
    """Runs ingest jobs (insert, update, upsert, delete, hardDelete) end to end.

    One instance can drive several jobs, including from different threads; all
    per-job state lives in local variables of ``run``.
    """

    def __init__(self, client: BulkJobClient, poller: Optional[JobPoller] = None):
        self.client = client
        self.poller = poller if poller is not None else JobPoller(client)

    def run(self, sobject: str, operation: Union[Operation, str], csv_payload: Union[str, bytes],
            external_id_field: Optional[str] = None,
            poll_interval: float = DEFAULT_POLL_INTERVAL,
            timeout: float = DEFAULT_POLL_TIMEOUT) -> IngestSummary:
        """
        Load a CSV payload into ``sobject`` and wait for the org to process it.

        Args:
            sobject: API name of the object (e.g., "Account", "CustomObject__c")
            operation: insert, update, upsert, delete or hardDelete
            csv_payload: CSV with a header row of field API names. For delete and
                         hardDelete the payload must contain only an Id column.
            external_id_field: External id field, required for upsert
            poll_interval: Initial seconds between status checks
            timeout: Seconds to keep polling before giving up

        Returns:
            IngestSummary for the finished job

        Raises:
            ValueError: invalid operation / missing external id field
            RemoteError, JobCreationError: job creation failed (nothing to abort)
            BulkApiError: any later failure, after the job has been aborted
        """
        operation = Operation(operation)
        if operation.is_query:
            raise ValueError(f"{operation} is not an ingest operation")
        spec = JobSpec(operation=operation, sobject=sobject, external_id_field=external_id_field)
        operation_name = operation.value

        logger.info("Step 1: Creating %s job for %s", operation_name, sobject)
        job = self.client.create(spec)

        try:
            logger.info("Step 2: Uploading CSV data to job %s", job.id)
            self.client.upload_data(job.id, csv_payload)

            logger.info("Step 3: Closing job %s (UploadComplete)", job.id)
            self.client.close(job.id)

            logger.info("Step 4: Polling job %s", job.id)
            finished = self.poller.poll(job.id, False, poll_interval, timeout)
        except BulkApiError as e:
            self._abort_quietly(job.id)
            logger.error("Bulk %s on %s failed: %s", operation_name, sobject, e)
            raise e.add_context(operation_name, sobject)
        except Exception as e:
            self._abort_quietly(job.id)
            logger.error("Bulk %s on %s failed: %s", operation_name, sobject, e)
            raise BulkJobError(job.id, e).add_context(operation_name, sobject) from e
        except BaseException:
            # Interrupted locally; the org would otherwise keep processing the job
            self._abort_quietly(job.id)
            raise

        return IngestSummary(
            job_id=finished.id,
            state=finished.state,
            operation=operation_name,
            sobject=sobject,
            records_processed=finished.records_processed,
            records_failed=finished.records_failed,
        )

    def _abort_quietly(self, job_id: str):
        try:
            self.client.abort(job_id)
            logger.info("Aborted job %s", job_id)
        except Exception as e:
            logger.warning("Failed to abort job %s: %s", job_id, e)

    def insert(self, sobject: str, csv_payload, **kwargs) -> IngestSummary:
        return self.run(sobject, Operation.INSERT, csv_payload, **kwargs)

    def update(self, sobject: str, csv_payload, **kwargs) -> IngestSummary:
        return self.run(sobject, Operation.UPDATE, csv_payload, **kwargs)

    def upsert(self, sobject: str, csv_payload, external_id_field: str, **kwargs) -> IngestSummary:
        return self.run(sobject, Operation.UPSERT, csv_payload, external_id_field=external_id_field, **kwargs)

    def delete(self, sobject: str, csv_payload, **kwargs) -> IngestSummary:
        return self.run(sobject, Operation.DELETE, csv_payload, **kwargs)

    def hard_delete(self, sobject: str, csv_payload, **kwargs) -> IngestSummary:
        return self.run(sobject, Operation.HARD_DELETE, csv_payload, **kwargs)
