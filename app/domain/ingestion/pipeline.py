"""
Analysis stage of the ingestion pipeline.

    begin_analysis -> classify (sample) -> normalize_all (full set, optional)
                   -> complete_analysis | fail_analysis

A classification that ends as ``unknown`` (including the oracle fallback)
fails the record: nothing can be committed without a schema label. A bulk
normalization failure does not; the original rows are kept and the commit
stage's validation decides what can be stored.
"""
import logging
from typing import Dict, List, Optional

from app.domain.ingestion import lifecycle
from app.domain.ingestion.classifier import ClassificationResult, classify
from app.domain.ingestion.normalizer import normalize_with_report
from app.domain.ingestion.oracle import ClassificationOracle
from app.domain.ingestion.parser import ParseError, parse_file
from app.domain.ingestion.schemas import SchemaLabel
from app.integrations.storage import StorageDownloadError, download_file

logger = logging.getLogger(__name__)


def _mark_failed(upload_id: str, message: str, **fields) -> None:
    try:
        lifecycle.fail_analysis(upload_id, message, **fields)
    except lifecycle.InvalidTransitionError as exc:
        # Another writer already moved the record; leave its state alone.
        logger.warning("Could not mark upload %s as failed: %s", upload_id, exc)


def _unknown_message(result: ClassificationResult) -> str:
    if result.errors:
        return "; ".join(result.errors)
    return "Could not determine the data type of this file"


def _run_analysis(
    upload_id: str,
    headers: List[str],
    sample_rows: List[Dict[str, str]],
    all_rows: Optional[List[Dict[str, str]]],
    oracle: Optional[ClassificationOracle],
) -> ClassificationResult:
    """Runs with the record already in ``analyzing``; always leaves it in a terminal state."""
    total_rows = len(all_rows) if all_rows is not None else len(sample_rows)

    try:
        if not headers or total_rows == 0:
            raise ParseError("No data rows found in file")

        result = classify(headers, sample_rows, oracle=oracle)

        if result.detected_type is SchemaLabel.UNKNOWN:
            _mark_failed(
                upload_id,
                _unknown_message(result),
                detected_type=result.detected_type.value,
                ai_analysis=result.analysis_summary(),
                total_rows=total_rows,
            )
            logger.info("Upload %s failed analysis: data type unknown", upload_id)
            return result

        if all_rows is not None and len(all_rows) > len(result.normalized_data):
            report = normalize_with_report(headers, all_rows, result.detected_type, oracle=oracle)
            result.normalized_data = report.records
            if report.fell_back:
                result.errors.append(report.error)

        lifecycle.complete_analysis(
            upload_id,
            detected_type=result.detected_type.value,
            ai_analysis=result.analysis_summary(),
            total_rows=total_rows,
        )
    except Exception as exc:
        logger.exception("Analysis of upload %s failed", upload_id)
        _mark_failed(upload_id, str(exc) or type(exc).__name__, total_rows=total_rows)
        raise

    logger.info(
        "Upload %s processed as %s with %d rows",
        upload_id,
        result.detected_type.value,
        total_rows,
    )
    return result


def analyze_upload(
    upload_id: str,
    headers: List[str],
    sample_rows: List[Dict[str, str]],
    all_rows: Optional[List[Dict[str, str]]] = None,
    oracle: Optional[ClassificationOracle] = None,
) -> ClassificationResult:
    """
    Classify already-parsed rows for an upload and persist the outcome.

    Args:
        upload_id: Record to analyze; must be in ``uploaded``.
        headers: Parsed header row.
        sample_rows: Rows the client chose as the sample (bounded again by ``classify``).
        all_rows: The full row set; when larger than the normalized sample it
            is bulk-normalized and returned in ``normalized_data``.
        oracle: Oracle override (defaults to the configured provider).

    Raises:
        UploadNotFoundError: unknown upload id
        InvalidTransitionError: the record was already analyzed or is being analyzed
        ParseError: no data rows (the record is moved to ``failed`` first)
    """
    lifecycle.begin_analysis(upload_id)
    return _run_analysis(upload_id, list(headers), list(sample_rows), all_rows, oracle)


def analyze_stored_upload(upload_id: str, oracle: Optional[ClassificationOracle] = None) -> ClassificationResult:
    """Download, parse and analyze the file stored for ``upload_id``."""
    upload = lifecycle.require_upload(upload_id)
    lifecycle.begin_analysis(upload_id)

    try:
        content = download_file(upload["storage_path"])
        table = parse_file(content, upload["file_name"])
    except (ParseError, StorageDownloadError) as exc:
        logger.warning("Upload %s could not be read: %s", upload_id, exc)
        _mark_failed(upload_id, str(exc))
        raise

    return _run_analysis(upload_id, table.headers, table.rows, table.rows, oracle)
