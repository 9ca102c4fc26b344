# ruff: noqa: E402
"""HTTP surface for extraction results, consolidation and processing."""

from __future__ import annotations

import logging
from typing import Any

from dotenv import load_dotenv

load_dotenv()

from flask import Blueprint, Flask, current_app, jsonify, request
from pydantic import ValidationError as PydanticValidationError

from credit_extraction.core.errors import (
    INVALID_TRANSITION,
    NOT_FOUND,
    VALIDATION_FAILED,
    ExtractionError,
)
from credit_extraction.core.lifecycle import ReportLifecycleManager
from credit_extraction.core.models import ConsolidationMetadata, ConsolidationStrategy
from credit_extraction.core.store import JsonReportStore, ReportStore
from credit_extraction.core.summary import extraction_summary

logger = logging.getLogger(__name__)

api_bp = Blueprint("api", __name__)

_STATUS_BY_CODE = {
    NOT_FOUND: 404,
    VALIDATION_FAILED: 400,
    INVALID_TRANSITION: 409,
}


def build_manager(store: ReportStore | None = None) -> ReportLifecycleManager:
    """Wire a lifecycle manager from environment configuration."""

    return ReportLifecycleManager(store or JsonReportStore())


def _manager() -> ReportLifecycleManager:
    return current_app.extensions["credit_extraction"]


def _error(exc: ExtractionError) -> Any:
    status = _STATUS_BY_CODE.get(exc.code, 500)
    if status == 500:
        logger.error("API_ERROR code=%s message=%s", exc.code, exc.message)
    return jsonify({"error": exc.code, "message": exc.message}), status


def _document_view(document) -> dict:
    payload = document.model_dump(mode="json", exclude={"raw_text"})
    payload["raw_text_chars"] = len(document.raw_text or "")
    return payload


@api_bp.get("/health")
def health() -> Any:
    return jsonify({"status": "ok"})


@api_bp.get("/api/documents/<document_id>")
def get_document(document_id: str) -> Any:
    try:
        document = _manager().store.get_document(document_id)
    except ExtractionError as exc:
        return _error(exc)
    return jsonify(_document_view(document))


@api_bp.delete("/api/documents/<document_id>")
def delete_document(document_id: str) -> Any:
    try:
        _manager().delete_document(document_id)
    except ExtractionError as exc:
        return _error(exc)
    return "", 204


@api_bp.get("/api/documents/<document_id>/results")
def list_results(document_id: str) -> Any:
    try:
        results = _manager().store.list_results(document_id)
    except ExtractionError as exc:
        return _error(exc)
    return jsonify({"results": [r.model_dump(mode="json") for r in results]})


@api_bp.get("/api/documents/<document_id>/entities")
def get_entities(document_id: str) -> Any:
    store = _manager().store
    try:
        entities = store.get_all_entities(document_id)
        run_id = store.entity_run_id(document_id)
    except ExtractionError as exc:
        return _error(exc)
    return jsonify(
        {
            "run_id": run_id,
            "entities": {kind.value: rows for kind, rows in entities.items()},
        }
    )


@api_bp.get("/api/documents/<document_id>/consolidation")
def get_consolidation(document_id: str) -> Any:
    try:
        metadata = _manager().store.get_consolidation(document_id)
    except ExtractionError as exc:
        return _error(exc)
    if metadata is None:
        return jsonify({"error": "no_consolidation"}), 404
    return jsonify(metadata.model_dump(mode="json"))


@api_bp.put("/api/documents/<document_id>/consolidation")
def replace_consolidation(document_id: str) -> Any:
    raw = request.get_json(silent=True) or {}
    raw.setdefault("document_id", document_id)
    try:
        metadata = ConsolidationMetadata.model_validate(raw)
    except PydanticValidationError:
        return jsonify({"error": "invalid_request"}), 400
    if metadata.document_id != document_id:
        return jsonify({"error": "document_mismatch"}), 400
    try:
        stored = _manager().replace_consolidation(metadata)
    except ExtractionError as exc:
        return _error(exc)
    return jsonify(stored.model_dump(mode="json"))


@api_bp.post("/api/documents/<document_id>/reconsolidate")
def reconsolidate(document_id: str) -> Any:
    body = request.get_json(silent=True) or {}
    strategy = body.get("strategy")
    if strategy is not None:
        try:
            strategy = ConsolidationStrategy(strategy)
        except ValueError:
            return jsonify({"error": "invalid_strategy"}), 400
    try:
        outcome = _manager().reconsolidate(
            document_id, strategy, all_runs=bool(body.get("all_runs", False))
        )
    except ExtractionError as exc:
        return _error(exc)
    return jsonify(
        {
            "metadata": outcome.metadata.model_dump(mode="json"),
            "comparison": outcome.comparison.model_dump(mode="json"),
        }
    )


@api_bp.post("/api/documents/<document_id>/process")
def process_document(document_id: str) -> Any:
    body = request.get_json(silent=True) or {}
    force = bool(body.get("force", False))
    if body.get("async"):
        from credit_extraction.api.tasks import process_report_task

        task = process_report_task.delay(document_id, force)
        logger.info("EXTRACT_QUEUED doc=%s task=%s", document_id, task.id)
        return jsonify({"document_id": document_id, "task_id": task.id}), 202
    try:
        document = _manager().process(document_id, force=force)
    except ExtractionError as exc:
        return _error(exc)
    return jsonify(_document_view(document))


@api_bp.get("/api/summary")
def summary() -> Any:
    store = _manager().store
    results = []
    metadata = []
    for document_id in store.document_ids():
        results.extend(store.list_results(document_id))
        consolidation = store.get_consolidation(document_id)
        if consolidation is not None:
            metadata.append(consolidation)
    return jsonify(extraction_summary(results, metadata))


def create_app(manager: ReportLifecycleManager | None = None) -> Flask:
    app = Flask(__name__)
    app.extensions["credit_extraction"] = manager or build_manager()
    app.register_blueprint(api_bp)
    return app
