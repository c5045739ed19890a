import csv
import io
from contextlib import contextmanager
from typing import Dict, List, Optional, Tuple

from langchain_core.tools import tool

from bulk_client import BulkJobClient, Operation
from bulk_errors import BulkApiError
from bulk_poller import JobPoller
from bulk_query import BulkQueryOrchestrator
from bulk_results import ResultFetcher
from bulk_upload import BulkIngestOrchestrator
from http_transport import RequestsTransport
from org_connection import BulkSettings, Session, load_bulk_settings, load_session


def build_bulk_client(session: Optional[Session] = None,
                      settings: Optional[BulkSettings] = None) -> Tuple[BulkJobClient, BulkSettings]:
    """Create a job client for the configured org (ORG_* / BULK_* env vars by default)."""
    session = session or load_session()
    settings = settings or load_bulk_settings()
    return BulkJobClient(session, RequestsTransport(timeout=settings.http_timeout)), settings


@contextmanager
def open_bulk_client(session: Optional[Session] = None, settings: Optional[BulkSettings] = None):
    """Yield ``(client, settings)`` and close the client's HTTP session afterwards."""
    client, settings = build_bulk_client(session, settings)
    try:
        yield client, settings
    finally:
        client.transport.close()


def parse_csv_records(csv_content: str) -> List[Dict[str, str]]:
    """Parse CSV text into records, dropping rows where every value is blank.

    Raises:
        ValueError: a row has more values than the header has columns
    """
    records = []
    reader = csv.DictReader(io.StringIO(csv_content))
    for row in reader:
        if None in row:
            raise ValueError(f"CSV line {reader.line_num} has more values than the header row")
        if any(v and v.strip() for v in row.values() if isinstance(v, str)):
            records.append(row)
    return records


def records_to_csv(records: List[Dict[str, str]]) -> str:
    """
    Render records as LF-terminated CSV with a header row.

    The header is the union of keys in first-seen order, so records with
    missing fields get empty cells rather than shifting columns.
    """
    fieldnames = []
    for record in records:
        for key in record:
            if key not in fieldnames:
                fieldnames.append(key)

    csv_buffer = io.StringIO()
    writer = csv.DictWriter(csv_buffer, fieldnames=fieldnames, lineterminator='\n', restval='')
    writer.writeheader()
    writer.writerows(records)
    return csv_buffer.getvalue()


def _run_ingest(records: List[Dict[str, str]], sobject: str, operation: Operation,
                client: BulkJobClient, settings: BulkSettings,
                external_id_field: Optional[str] = None) -> dict:
    """
    Run one ingest job for ``records`` and collect per-record results.

    Returns:
        Dictionary containing deployment results:
        {
            "success": bool,
            "job_id": str or None,
            "total_records": int,
            "successful": int,
            "failed": int,
            "unprocessed": int,
            "errors": list,
            "created_ids": list
        }
    """
    all_results = {
        "success": False,
        "job_id": None,
        "total_records": len(records),
        "successful": 0,
        "failed": 0,
        "unprocessed": 0,
        "errors": [],
        "created_ids": []
    }
    if not records:
        all_results["errors"].append("No records provided")
        return all_results

    print(f"Found {len(records)} records for {operation.value} on {sobject}")

    orchestrator = BulkIngestOrchestrator(client, JobPoller(client))
    try:
        summary = orchestrator.run(
            sobject,
            operation,
            records_to_csv(records),
            external_id_field=external_id_field,
            poll_interval=settings.poll_interval,
            timeout=settings.poll_timeout,
        )
    except (BulkApiError, ValueError) as e:
        print(f"Error: {e}")
        all_results["errors"].append({"step": "bulk_job", "error": str(e)})
        return all_results

    all_results["job_id"] = summary.job_id
    print(f"Job {summary.job_id} finished: {summary.records_processed} processed, "
          f"{summary.records_failed} failed")

    try:
        results = ResultFetcher(client).fetch_all(summary.job_id)
    except BulkApiError as e:
        print(f"Warning: Could not retrieve job results: {e}")
        all_results["successful"] = summary.records_processed - summary.records_failed
        all_results["failed"] = summary.records_failed
    else:
        all_results["successful"] = len(results.successful)
        all_results["failed"] = len(results.failed)
        all_results["unprocessed"] = len(results.unprocessed)
        all_results["errors"].extend(results.errors)
        all_results["created_ids"] = results.created_ids

    print(f"\n=== Deployment Summary ===")
    print(f"Total records: {all_results['total_records']}")
    print(f"Successful: {all_results['successful']}")
    print(f"Failed: {all_results['failed']}")
    if all_results['errors']:
        print(f"\nErrors:")
        for error in all_results['errors'][:10]:  # Show first 10 errors
            print(f"  - {error}")
        if len(all_results['errors']) > 10:
            print(f"  ... and {len(all_results['errors']) - 10} more errors")

    all_results["success"] = all_results["failed"] == 0 and all_results["unprocessed"] == 0
    return all_results


def _format_ingest_result(result: dict, sobject: str, verb: str) -> str:
    if result["success"]:
        message = f"✅ Successfully {verb} {result['successful']} out of {result['total_records']} records on {sobject} (job {result['job_id']})."
        if result["created_ids"]:
            message += f" Created record IDs: {', '.join(result['created_ids'][:10])}"
            if len(result["created_ids"]) > 10:
                message += f" (and {len(result['created_ids']) - 10} more)"
        return message
    error_summary = (
        f"❌ Bulk job completed with errors. {result['successful']} successful, "
        f"{result['failed']} failed out of {result['total_records']} total records."
    )
    if result['errors']:
        error_summary += f"\nErrors: {result['errors'][:3]}"  # Show first 3 errors
    return error_summary


@tool
def deploy_csv_records(csv_content: str, sobject: str) -> str:
    """Insert CSV records into a Salesforce org using a Bulk API 2.0 ingest job.

    The CSV content must include a header row of createable field API names
    followed by data rows.

    Args:
        csv_content: CSV content as a string, including header row with field names
                    (API names) and data rows. Example:
                    "Name,Phone\nAcme Corp,555-0100\nGlobal Inc,555-0200"
        sobject: The API name of the Salesforce SObject (e.g., "Account", "Contact",
                "CustomObject__c", etc.)

    Returns:
        A string describing the job result: processed, successful and failed
        counts, error details, and created record IDs.
    """
    print(f"\n=== Starting CSV Records Deploy ===")
    print(f"SObject: {sobject}")

    try:
        records = parse_csv_records(csv_content)
    except ValueError as e:
        return f"Error: {e}"
    if not records:
        return "Error: No valid records found in CSV content. Please ensure the CSV has a header row and at least one data row."

    try:
        with open_bulk_client() as (client, settings):
            result = _run_ingest(records, sobject, Operation.INSERT, client, settings)
    except ValueError as e:
        return f"❌ Could not connect to the org: {e}"
    return _format_ingest_result(result, sobject, "deployed")


@tool
def delete_records(csv_content: str, sobject: str, hard: bool = False) -> str:
    """Delete Salesforce records listed in a CSV of record Ids.

    Args:
        csv_content: CSV with a single "Id" column, one record Id per row
        sobject: The API name of the Salesforce SObject the records belong to
        hard: Permanently delete (hardDelete) instead of moving to the recycle bin

    Returns:
        A string describing how many records were deleted and any errors.
    """
    print(f"\n=== Starting Bulk Delete ===")
    try:
        records = parse_csv_records(csv_content)
    except ValueError as e:
        return f"Error: {e}"
    if not records:
        return "Error: No record Ids found in CSV content."
    if any(set(record) != {"Id"} for record in records):
        return "Error: Delete CSV must contain only an Id column."

    operation = Operation.HARD_DELETE if hard else Operation.DELETE
    try:
        with open_bulk_client() as (client, settings):
            result = _run_ingest(records, sobject, operation, client, settings)
    except ValueError as e:
        return f"❌ Could not connect to the org: {e}"
    return _format_ingest_result(result, sobject, "deleted")


@tool
def run_bulk_query(soql: str, include_deleted: bool = False) -> str:
    """Run a SOQL query as a Bulk API 2.0 query job and return the rows as CSV.

    Suited to large result sets; results are downloaded page by page.

    Args:
        soql: The SOQL query (e.g., "SELECT Id, Name FROM Account")
        include_deleted: Also return deleted and archived records (queryAll)

    Returns:
        The number of rows followed by the rows as CSV, or an error description.
    """
    print(f"\n=== Starting Bulk Query ===")
    print(f"Query: {soql}")

    try:
        with open_bulk_client() as (client, settings):
            orchestrator = BulkQueryOrchestrator(client, JobPoller(client))
            rows = orchestrator.run(
                soql,
                include_deleted=include_deleted,
                poll_interval=settings.poll_interval,
                timeout=settings.poll_timeout,
                max_records_per_page=settings.max_records_per_page,
            )
    except (BulkApiError, ValueError) as e:
        return f"❌ Bulk query failed: {e}"

    if not rows:
        return "Query returned 0 rows."
    return f"Query returned {len(rows)} rows.\n{records_to_csv(rows)}"


# --------------------------------------------------------
# TEST BULK INSERT + QUERY
# --------------------------------------------------------
if __name__ == "__main__":
    import logging

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    print("=" * 60)
    print("Testing Bulk API 2.0 insert and query")
    print("=" * 60)

    print(deploy_csv_records.invoke({"csv_content": "Name\nAcme One\nBeta Two", "sobject": "Account"}))
    print(run_bulk_query.invoke({"soql": "SELECT Id, Name FROM Account ORDER BY CreatedDate DESC LIMIT 5"}))
