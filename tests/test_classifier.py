"""
Tests for the classification client: sample bound, response contract and
the fallback result on every kind of oracle failure.
"""
from unittest.mock import MagicMock

import pytest
from langchain_core.messages import AIMessage

from app.domain.ingestion.classifier import FALLBACK_SUGGESTION, classify
from app.domain.ingestion.oracle import AnthropicOracle, OracleError
from app.domain.ingestion.schemas import SchemaLabel
from tests.utils.fakes import StubOracle, tenant_payload, tenant_rows


def _assert_fallback(result):
    assert result.detected_type is SchemaLabel.UNKNOWN
    assert result.confidence == 0
    assert result.normalized_data == []
    assert result.suggestions == [FALLBACK_SUGGESTION]
    assert len(result.errors) == 1
    assert result.errors[0].startswith("Analysis failed: ")
    assert result.is_fallback


@pytest.mark.parametrize("row_count", [0, 1, 4, 5, 6, 250])
def test_classify_sends_at_most_the_default_sample(row_count):
    oracle = StubOracle(classify_payload=tenant_payload([]))

    classify(["name", "unit"], tenant_rows(row_count), oracle=oracle)

    sent_rows = oracle.classify_calls[0][1]
    assert len(sent_rows) == min(row_count, 5)
    assert sent_rows == tenant_rows(row_count)[:5]


def test_classify_respects_an_explicit_sample_bound():
    oracle = StubOracle(classify_payload=tenant_payload([]))

    classify(["name", "unit"], tenant_rows(20), max_sample=2, oracle=oracle)

    assert len(oracle.classify_calls[0][1]) == 2


def test_classify_returns_oracle_verdict():
    records = [
        {"name": "John", "email": "j@x.com", "unit": "4A"},
        {"name": "Jane", "email": "jane@x.com", "unit": "4B"},
    ]
    oracle = StubOracle(classify_payload=tenant_payload(records, confidence=0.9))

    result = classify(["name", "email", "unit"], records, oracle=oracle)

    assert result.detected_type is SchemaLabel.TENANTS
    assert result.confidence == 0.9
    assert result.normalized_data == records
    assert result.errors == []
    assert not result.is_fallback


def test_classify_accepts_label_in_any_case():
    payload = tenant_payload([])
    payload["detectedType"] = " Tenants "

    result = classify(["name"], tenant_rows(1), oracle=StubOracle(classify_payload=payload))

    assert result.detected_type is SchemaLabel.TENANTS


def test_classify_thrown_error_returns_fallback():
    oracle = StubOracle(classify_error=ConnectionError("network unreachable"))

    result = classify(["name", "unit"], tenant_rows(3), oracle=oracle)

    _assert_fallback(result)
    assert "network unreachable" in result.errors[0]


def test_classify_timeout_returns_fallback():
    oracle = StubOracle(classify_payload=tenant_payload([]), delay=0.5)

    result = classify(["name", "unit"], tenant_rows(3), oracle=oracle, timeout_seconds=0.05)

    _assert_fallback(result)
    assert "did not respond" in result.errors[0]


@pytest.mark.parametrize(
    "payload",
    [
        {"detectedType": "invoices", "confidence": 0.8},
        {"detectedType": "tenants", "confidence": 1.5},
        {"detectedType": "tenants"},
        {"confidence": 0.7, "normalizedData": []},
        {"detectedType": "tenants", "confidence": 0.7, "normalizedData": "rows"},
    ],
)
def test_classify_contract_violation_returns_fallback(payload):
    result = classify(["name"], tenant_rows(1), oracle=StubOracle(classify_payload=payload))

    _assert_fallback(result)


def _anthropic_oracle_replying(content):
    oracle = AnthropicOracle(api_key="test-key", model="claude-test", timeout_seconds=5, max_retries=0)
    llm = MagicMock()
    llm.invoke.return_value = AIMessage(content=content)
    oracle._llm = llm
    return oracle, llm


def test_classify_malformed_json_returns_fallback():
    oracle, _ = _anthropic_oracle_replying("I think these are tenants!")

    result = classify(["name", "unit"], tenant_rows(2), oracle=oracle)

    _assert_fallback(result)
    assert "not valid JSON" in result.errors[0]


def test_classify_parses_fenced_model_reply():
    reply = (
        "```json\n"
        '{"detectedType": "units", "confidence": 0.75, "normalizedData": [{"unit_number": "4A"}],'
        ' "suggestions": [], "errors": []}\n'
        "```"
    )
    oracle, llm = _anthropic_oracle_replying(reply)

    result = classify(["Unit", "Beds"], [{"Unit": "4A", "Beds": "2"}], oracle=oracle)

    assert result.detected_type is SchemaLabel.UNITS
    assert result.normalized_data == [{"unit_number": "4A"}]
    prompt = llm.invoke.call_args[0][0][1].content
    assert "Headers: Unit, Beds" in prompt


def test_classify_without_api_key_returns_fallback():
    oracle = AnthropicOracle(api_key="")

    result = classify(["name"], tenant_rows(1), oracle=oracle)

    _assert_fallback(result)
    assert "API key not configured" in result.errors[0]


def test_classify_flags_duplicate_headers():
    oracle = StubOracle(classify_payload=tenant_payload([]))

    result = classify(["name", "unit", "name"], [{"name": "x", "unit": "1"}], oracle=oracle)

    assert any("Duplicate column headers" in suggestion and "name" in suggestion for suggestion in result.suggestions)


def test_classify_never_raises_for_oracle_error_subclasses():
    result = classify(["name"], tenant_rows(1), oracle=StubOracle(classify_error=OracleError("")))

    _assert_fallback(result)
    assert result.errors == ["Analysis failed: OracleError"]
