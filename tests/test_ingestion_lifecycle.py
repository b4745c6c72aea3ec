"""
Tests for the analysis state machine and the analysis pipeline that drives it.
"""
import pytest

from app.domain.ingestion import lifecycle
from app.domain.ingestion.lifecycle import AnalysisStatus, InvalidTransitionError, UploadNotFoundError
from app.domain.ingestion.oracle import HeuristicOracle
from app.domain.ingestion.parser import ParseError
from app.domain.ingestion.pipeline import analyze_stored_upload, analyze_upload
from app.domain.ingestion.schemas import SchemaLabel
from app.integrations.storage import StorageDownloadError
from tests.utils.fakes import StubOracle, tenant_payload, tenant_rows

ALLOWED_PATHS = (
    ["uploaded"],
    ["uploaded", "analyzing"],
    ["uploaded", "analyzing", "processed"],
    ["uploaded", "analyzing", "failed"],
)


def test_transition_table_only_moves_forward():
    assert lifecycle.can_transition(AnalysisStatus.UPLOADED, AnalysisStatus.ANALYZING)
    assert not lifecycle.can_transition(AnalysisStatus.UPLOADED, AnalysisStatus.PROCESSED)
    for terminal in (AnalysisStatus.PROCESSED, AnalysisStatus.FAILED):
        for target in AnalysisStatus:
            assert not lifecycle.can_transition(terminal, target)


def test_analysis_happy_path(upload_store):
    upload = upload_store.add()
    records = [
        {"name": "John", "email": "j@x.com", "unit": "4A"},
        {"name": "Jane", "email": "jane@x.com", "unit": "4B"},
    ]
    oracle = StubOracle(classify_payload=tenant_payload(records, confidence=0.9))

    result = analyze_upload(upload["id"], ["name", "email", "unit"], records, oracle=oracle)

    stored = upload_store.get_upload_by_id(upload["id"])
    assert result.detected_type is SchemaLabel.TENANTS
    assert result.normalized_data == records
    assert upload_store.statuses(upload["id"]) == ["uploaded", "analyzing", "processed"]
    assert stored["detected_type"] == "tenants"
    assert stored["total_rows"] == 2
    assert stored["processed_rows"] == 0
    assert stored["ai_analysis"] == {"confidence": 0.9, "suggestions": [], "errors": []}
    assert oracle.normalize_calls == []


def test_analysis_normalizes_rows_beyond_the_sample(upload_store):
    upload = upload_store.add()
    rows = tenant_rows(12)
    oracle = StubOracle(classify_payload=tenant_payload(rows[:5]))

    result = analyze_upload(upload["id"], ["name", "unit"], rows[:5], all_rows=rows, oracle=oracle)

    assert [size for _, size, _ in oracle.normalize_calls] == [12]
    assert result.normalized_data == rows
    assert upload_store.get_upload_by_id(upload["id"])["total_rows"] == 12


def test_normalization_failure_keeps_record_processed(upload_store):
    upload = upload_store.add()
    rows = tenant_rows(8)
    oracle = StubOracle(classify_payload=tenant_payload(rows[:5]), normalize_error=RuntimeError("overloaded"))

    result = analyze_upload(upload["id"], ["name", "unit"], rows[:5], all_rows=rows, oracle=oracle)

    assert result.normalized_data == rows
    assert "Normalization failed: overloaded" in result.errors
    assert upload_store.get_upload_by_id(upload["id"])["status"] == "processed"


def test_oracle_down_moves_record_to_failed(upload_store):
    upload = upload_store.add()
    oracle = StubOracle(classify_error=ConnectionError("network unreachable"))

    result = analyze_upload(upload["id"], ["name", "unit"], tenant_rows(2), oracle=oracle)

    stored = upload_store.get_upload_by_id(upload["id"])
    assert result.is_fallback
    assert upload_store.statuses(upload["id"]) == ["uploaded", "analyzing", "failed"]
    assert stored["detected_type"] == "unknown"
    assert "network unreachable" in stored["error_message"]
    assert stored["ai_analysis"]["confidence"] == 0.0


def test_unknown_classification_with_confidence_also_fails(upload_store):
    upload = upload_store.add()
    payload = {"detectedType": "unknown", "confidence": 0.3, "normalizedData": [], "suggestions": [], "errors": []}

    analyze_upload(upload["id"], ["foo"], [{"foo": "1"}], oracle=StubOracle(classify_payload=payload))

    stored = upload_store.get_upload_by_id(upload["id"])
    assert stored["status"] == "failed"
    assert stored["error_message"] == "Could not determine the data type of this file"


def test_empty_row_set_fails_record(upload_store):
    upload = upload_store.add()
    oracle = StubOracle(classify_payload=tenant_payload([]))

    with pytest.raises(ParseError):
        analyze_upload(upload["id"], ["name", "email"], [], all_rows=[], oracle=oracle)

    stored = upload_store.get_upload_by_id(upload["id"])
    assert stored["status"] == "failed"
    assert stored["error_message"] == "No data rows found in file"
    assert oracle.classify_calls == []


def test_stored_header_only_file_fails_record(upload_store, storage):
    upload = upload_store.add(file_name="empty.csv")
    storage.objects[upload["storage_path"]] = b"name,email"

    with pytest.raises(ParseError):
        analyze_stored_upload(upload["id"], oracle=StubOracle(classify_payload=tenant_payload([])))

    stored = upload_store.get_upload_by_id(upload["id"])
    assert upload_store.statuses(upload["id"]) == ["uploaded", "analyzing", "failed"]
    assert stored["error_message"]


def test_stored_file_missing_from_storage_fails_record(upload_store, storage):
    upload = upload_store.add()

    with pytest.raises(StorageDownloadError):
        analyze_stored_upload(upload["id"], oracle=StubOracle(classify_payload=tenant_payload([])))

    assert upload_store.get_upload_by_id(upload["id"])["status"] == "failed"


def test_stored_file_is_parsed_and_analyzed(upload_store, storage):
    upload = upload_store.add(file_name="tenants.csv")
    storage.objects[upload["storage_path"]] = b"Tenant Name,Apartment\nJohn,4A\nJane,4B\n"

    result = analyze_stored_upload(upload["id"], oracle=HeuristicOracle())

    assert result.detected_type is SchemaLabel.TENANTS
    assert result.normalized_data == [{"name": "John", "unit": "4A"}, {"name": "Jane", "unit": "4B"}]
    assert upload_store.get_upload_by_id(upload["id"])["total_rows"] == 2


@pytest.mark.parametrize("status", ["analyzing", "processed", "failed"])
def test_second_analysis_is_rejected(upload_store, status):
    upload = upload_store.add(status=status, error_message="earlier failure" if status == "failed" else None)
    oracle = StubOracle(classify_payload=tenant_payload(tenant_rows(1)))

    with pytest.raises(InvalidTransitionError):
        analyze_upload(upload["id"], ["name", "unit"], tenant_rows(1), oracle=oracle)

    assert upload_store.get_upload_by_id(upload["id"])["status"] == status
    assert oracle.classify_calls == []


def test_analysis_of_missing_upload_raises_not_found(upload_store):
    with pytest.raises(UploadNotFoundError):
        analyze_upload("does-not-exist", ["name"], tenant_rows(1), oracle=StubOracle())


def test_observed_transitions_are_always_forward(upload_store):
    scenarios = [
        StubOracle(classify_payload=tenant_payload(tenant_rows(2))),
        StubOracle(classify_error=TimeoutError()),
        StubOracle(classify_payload={"detectedType": "bogus"}),
    ]
    for oracle in scenarios:
        upload = upload_store.add()
        analyze_upload(upload["id"], ["name", "unit"], tenant_rows(2), oracle=oracle)
        with pytest.raises(InvalidTransitionError):
            analyze_upload(upload["id"], ["name", "unit"], tenant_rows(2), oracle=oracle)

        assert upload_store.statuses(upload["id"]) in ALLOWED_PATHS


def test_commit_cannot_start_before_analysis_finishes(upload_store):
    upload = upload_store.add(status="analyzing")

    with pytest.raises(InvalidTransitionError):
        lifecycle.begin_commit(upload["id"])

    assert upload_store.get_upload_by_id(upload["id"])["commit_status"] == "not_started"
