"""
Tests for bulk normalization: chunking and fallback to the original rows.
"""
import time

from app.domain.ingestion.normalizer import normalize_all, normalize_with_report
from app.domain.ingestion.oracle import HeuristicOracle
from app.domain.ingestion.schemas import SchemaLabel
from tests.utils.fakes import StubOracle

HEADERS = ["Tenant", "Apt"]


def _rows(count):
    return [{"Tenant": f"Tenant {index}", "Apt": str(index)} for index in range(count)]


def _rename(rows):
    return [{"name": row["Tenant"], "unit": row["Apt"]} for row in rows]


def test_normalize_all_chunks_and_preserves_order():
    oracle = StubOracle(normalize_fn=_rename)
    rows = _rows(120)

    report = normalize_with_report(HEADERS, rows, SchemaLabel.TENANTS, oracle=oracle, chunk_size=50)

    assert [size for _, size, _ in oracle.normalize_calls] == [50, 50, 20]
    assert all(label is SchemaLabel.TENANTS for _, _, label in oracle.normalize_calls)
    assert report.records == _rename(rows)
    assert not report.fell_back


def test_normalize_all_falls_back_when_oracle_raises():
    rows = _rows(3)
    oracle = StubOracle(normalize_error=ConnectionError("connection reset"))

    report = normalize_with_report(HEADERS, rows, SchemaLabel.TENANTS, oracle=oracle)

    assert report.records == rows
    assert report.records[0] is not rows[0]
    assert report.error == "Normalization failed: connection reset"


def test_normalize_all_falls_back_when_a_chunk_loses_rows():
    rows = _rows(7)
    oracle = StubOracle(normalize_fn=lambda chunk: _rename(chunk)[:-1] if len(chunk) < 3 else _rename(chunk))

    report = normalize_with_report(HEADERS, rows, SchemaLabel.TENANTS, oracle=oracle, chunk_size=3)

    assert report.records == rows
    assert "rows 7-7" in report.error


def test_normalize_all_falls_back_on_non_record_output():
    rows = _rows(2)
    oracle = StubOracle(normalize_fn=lambda chunk: ["John", "Jane"])

    assert normalize_all(HEADERS, rows, SchemaLabel.TENANTS, oracle=oracle) == rows


def test_normalize_all_with_unknown_label_returns_originals_without_calling_oracle():
    oracle = StubOracle(normalize_fn=_rename)

    report = normalize_with_report(HEADERS, _rows(2), SchemaLabel.UNKNOWN, oracle=oracle)

    assert report.records == _rows(2)
    assert report.fell_back
    assert oracle.normalize_calls == []


def test_normalize_all_times_out_to_originals():
    class SlowOracle(StubOracle):
        def normalize(self, headers, rows, label):
            time.sleep(0.5)
            return _rename(rows)

    rows = _rows(2)

    assert normalize_all(HEADERS, rows, SchemaLabel.TENANTS, oracle=SlowOracle(), timeout_seconds=0.05) == rows


def test_normalize_all_with_heuristic_oracle():
    rows = [{"Tenant Name": "John", "Apartment": "4A", "Rent": "$1,200"}]

    records = normalize_all(["Tenant Name", "Apartment", "Rent"], rows, SchemaLabel.TENANTS, oracle=HeuristicOracle())

    assert records == [{"name": "John", "unit": "4A", "monthly_rent": "$1,200"}]
