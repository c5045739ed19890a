"""
Unit tests for BulkJobClient: request shapes, state checks and result parsing.
"""
import json

import pytest

from bulk_client import (
    JobSpec,
    JobState,
    NO_MORE_PAGES,
    Operation,
    ResultCategory,
    ResultPage,
)
from bulk_errors import JobCreationError, RemoteError
from conftest import INGEST_URL, INSTANCE_URL, QUERY_URL, csv_response, json_response
from http_transport import HttpResponse


def _call(transport, index=0):
    args, kwargs = transport.request.call_args_list[index]
    return args[0], args[1], kwargs


class TestJobSpec:
    def test_upsert_requires_external_id(self):
        with pytest.raises(ValueError):
            JobSpec(operation="upsert", sobject="Account")

    def test_external_id_rejected_for_insert(self):
        with pytest.raises(ValueError):
            JobSpec(operation="insert", sobject="Account", external_id_field="Ext__c")

    def test_query_requires_soql(self):
        with pytest.raises(ValueError):
            JobSpec(operation="query", query="  ")

    def test_unknown_operation(self):
        with pytest.raises(ValueError):
            JobSpec(operation="merge", sobject="Account")

    def test_ingest_payload(self):
        spec = JobSpec(operation=Operation.UPSERT, sobject="Account", external_id_field="Ext__c")
        assert spec.to_payload() == {
            "object": "Account",
            "operation": "upsert",
            "contentType": "CSV",
            "lineEnding": "LF",
            "columnDelimiter": "COMMA",
            "externalIdFieldName": "Ext__c",
        }

    def test_query_payload(self):
        spec = JobSpec(operation="queryAll", query="SELECT Id FROM Account")
        assert spec.to_payload() == {
            "operation": "queryAll",
            "query": "SELECT Id FROM Account",
            "columnDelimiter": "COMMA",
            "lineEnding": "LF",
        }


class TestCreate:
    def test_create_ingest_job_open(self, client, transport):
        transport.request.return_value = json_response({"id": "750A", "state": "Open", "object": "Account"})

        job = client.create(JobSpec(operation="insert", sobject="Account"))

        assert job.id == "750A"
        assert job.state == JobState.OPEN
        method, url, kwargs = _call(transport)
        assert (method, url) == ("POST", INGEST_URL)
        assert kwargs["headers"]["Authorization"] == "Bearer 00Dxx!token"
        assert json.loads(kwargs["data"])["operation"] == "insert"

    def test_create_ingest_job_wrong_state(self, client, transport):
        transport.request.return_value = json_response({"id": "750A", "state": "Failed"})

        with pytest.raises(JobCreationError) as exc_info:
            client.create(JobSpec(operation="insert", sobject="Account"))
        assert exc_info.value.job.id == "750A"

    def test_create_http_error(self, client, transport):
        transport.request.return_value = json_response([{"errorCode": "INVALID_FIELD"}], status=400)

        with pytest.raises(RemoteError) as exc_info:
            client.create(JobSpec(operation="insert", sobject="Account"))
        assert exc_info.value.status == 400
        assert exc_info.value.url == INGEST_URL
        assert "INVALID_FIELD" in exc_info.value.body

    def test_create_query_job_accepts_upload_complete(self, client, transport):
        transport.request.return_value = json_response({"id": "750Q", "state": "UploadComplete"})

        job = client.create(JobSpec(operation="query", query="SELECT Id FROM Account"))

        assert job.state == "UploadComplete"
        assert _call(transport)[1] == QUERY_URL


class TestLifecycleCalls:
    def test_upload_data_sends_csv_bytes(self, client, transport):
        transport.request.return_value = csv_response("", status=201)

        client.upload_data("750A", "Name\nAcme\n")

        method, url, kwargs = _call(transport)
        assert method == "PUT"
        assert url == f"{INGEST_URL}/750A/batches"
        assert kwargs["headers"]["Content-Type"] == "text/csv; charset=UTF-8"
        assert kwargs["data"] == b"Name\nAcme\n"

    def test_close_and_abort_patch_state(self, client, transport):
        transport.request.side_effect = [
            json_response({"id": "750A", "state": "UploadComplete"}),
            json_response({"id": "750A", "state": "Aborted"}),
        ]

        client.close("750A")
        client.abort("750A")

        assert json.loads(_call(transport, 0)[2]["data"]) == {"state": "UploadComplete"}
        method, url, kwargs = _call(transport, 1)
        assert (method, url) == ("PATCH", f"{INGEST_URL}/750A")
        assert json.loads(kwargs["data"]) == {"state": "Aborted"}

    def test_get_status_defaults_missing_counts(self, client, transport):
        transport.request.return_value = json_response({"id": "750Q", "state": "InProgress", "operation": "query"})

        job = client.get_status("750Q", is_query_job=True)

        assert _call(transport)[1] == f"{QUERY_URL}/750Q"
        assert job.records_processed == 0
        assert job.records_failed == 0
        assert job.error_message is None
        assert not job.is_terminal

    def test_get_status_terminal_is_stable(self, client, transport):
        payload = {"id": "750A", "state": "JobComplete", "numberRecordsProcessed": 2, "numberRecordsFailed": 1}
        transport.request.side_effect = [json_response(payload), json_response(payload)]

        first = client.get_status("750A")
        second = client.get_status("750A")

        assert first == second
        assert first.is_terminal

    def test_delete_job(self, client, transport):
        transport.request.return_value = csv_response("", status=204)

        client.delete_job("750Q", is_query_job=True)

        assert _call(transport)[:2] == ("DELETE", f"{QUERY_URL}/750Q")

    def test_list_jobs_follows_next_records_url(self, client, transport):
        transport.request.side_effect = [
            json_response({"done": False, "records": [{"id": "750A", "state": "Open"}],
                           "nextRecordsUrl": "/services/data/v61.0/jobs/ingest?queryLocator=01g"}),
            json_response({"done": True, "records": [{"id": "750B", "state": "JobComplete"}],
                           "nextRecordsUrl": None}),
        ]

        jobs = client.list_jobs(jobType="V2Ingest")

        assert [job.id for job in jobs] == ["750A", "750B"]
        assert _call(transport, 0)[2]["params"] == {"jobType": "V2Ingest"}
        assert _call(transport, 1)[1] == f"{INSTANCE_URL}/services/data/v61.0/jobs/ingest?queryLocator=01g"


class TestResults:
    def test_fetch_result_page_first_page(self, client, transport):
        transport.request.return_value = csv_response(
            "Id,Name\n001A,Acme\n001B,Globex\n", headers={"sforce-locator": "MTAwMDA"}
        )

        page = client.fetch_result_page("750Q", "", 2)

        method, url, kwargs = _call(transport)
        assert url == f"{QUERY_URL}/750Q/results"
        assert kwargs["params"] == {"maxRecords": 2}
        assert kwargs["headers"]["Accept"] == "text/csv"
        assert page.rows == [{"Id": "001A", "Name": "Acme"}, {"Id": "001B", "Name": "Globex"}]
        assert page.next_cursor == "MTAwMDA"
        assert page.has_more

    def test_fetch_result_page_passes_locator_and_detects_last_page(self, client, transport):
        transport.request.return_value = csv_response("Id\n001C\n", headers={"Sforce-Locator": NO_MORE_PAGES})

        page = client.fetch_result_page("750Q", "MTAwMDA")

        assert _call(transport)[2]["params"]["locator"] == "MTAwMDA"
        assert not page.has_more

    def test_result_page_without_locator_is_last(self):
        assert not ResultPage(cursor="", rows=[]).has_more

    def test_fetch_categorized_empty_body(self, client, transport):
        transport.request.return_value = csv_response("")

        assert client.fetch_categorized("750A", ResultCategory.UNPROCESSED) == []
        assert _call(transport)[1] == f"{INGEST_URL}/750A/unprocessedrecords"

    def test_fetch_categorized_failed_rows(self, client, transport):
        transport.request.return_value = csv_response('"sf__Id","sf__Error",Name\n"","REQUIRED_FIELD_MISSING",""\n')

        rows = client.fetch_categorized("750A", "failedResults")

        assert rows == [{"sf__Id": "", "sf__Error": "REQUIRED_FIELD_MISSING", "Name": ""}]


class TestUndecodableBodies:
    def test_create_with_non_json_body_raises_remote_error(self, client, transport):
        transport.request.return_value = csv_response("<html>Service Unavailable</html>", status=200)

        with pytest.raises(RemoteError) as exc_info:
            client.create(JobSpec(operation="insert", sobject="Account"))
        assert exc_info.value.status == 200
        assert "Service Unavailable" in exc_info.value.body

    def test_status_with_json_list_raises_remote_error(self, client, transport):
        transport.request.return_value = json_response([{"id": "750A"}])

        with pytest.raises(RemoteError):
            client.get_status("750A")

    def test_result_page_with_invalid_utf8_raises_remote_error(self, client, transport):
        transport.request.return_value = HttpResponse(status_code=200, content=b"Id,Name\n001A,\xff\xfe\n")

        with pytest.raises(RemoteError) as exc_info:
            client.fetch_result_page("750Q")
        assert exc_info.value.url == f"{QUERY_URL}/750Q/results"

    def test_categorized_with_invalid_utf8_raises_remote_error(self, client, transport):
        transport.request.return_value = HttpResponse(status_code=200, content=b"\xff")

        with pytest.raises(RemoteError):
            client.fetch_categorized("750A", ResultCategory.SUCCESSFUL)
