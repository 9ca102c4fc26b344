# ruff: noqa: E402
import logging
import threading

from dotenv import load_dotenv

load_dotenv()

from celery import Celery, shared_task, signals
from kombu import Queue

from credit_extraction.config import CELERY_BROKER_URL, CELERY_EXTRACTION_QUEUE
from credit_extraction.core.errors import CANCELLED, ExtractionError
from credit_extraction.core.lifecycle import ReportLifecycleManager

logger = logging.getLogger(__name__)
log = logger

app = Celery("credit_extraction")
app.conf.update(
    broker_url=CELERY_BROKER_URL,
    result_backend=CELERY_BROKER_URL,
    task_queues=[Queue(CELERY_EXTRACTION_QUEUE)],
    task_default_queue=CELERY_EXTRACTION_QUEUE,
    task_routes={
        "credit_extraction.api.tasks.process_report_task": {"queue": CELERY_EXTRACTION_QUEUE},
    },
)

_manager: ReportLifecycleManager | None = None
_manager_lock = threading.Lock()


def set_manager(manager: ReportLifecycleManager | None) -> None:
    """Swap the worker's lifecycle manager for tests or embedding."""
    global _manager
    with _manager_lock:
        _manager = manager


def get_manager() -> ReportLifecycleManager:
    global _manager
    with _manager_lock:
        if _manager is None:
            from credit_extraction.api.app import build_manager

            _manager = build_manager()
        return _manager


@signals.worker_process_init.connect
def configure_worker(**_):
    logger.info(
        "EXTRACT_WORKER_INIT queue=%s broker_set=%s",
        CELERY_EXTRACTION_QUEUE,
        bool(CELERY_BROKER_URL),
    )


@shared_task(bind=True)
def process_report_task(self, document_id: str, force: bool = False) -> dict:
    """Run extraction for ``document_id`` and report the final status."""
    log.info("EXTRACT_TASK start doc=%s force=%s", document_id, force)
    try:
        document = get_manager().process(document_id, force=force)
    except ExtractionError as exc:
        if exc.code != CANCELLED:
            raise
        log.info("EXTRACT_TASK cancelled doc=%s", document_id)
        return {"document_id": document_id, "ok": False, "status": "cancelled"}

    status = document.extraction_status.value
    log.info("EXTRACT_TASK end doc=%s status=%s", document_id, status)
    return {
        "document_id": document_id,
        "ok": status == "completed",
        "status": status,
        "errors": document.processing_errors,
    }
