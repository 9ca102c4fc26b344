import httpx
import pytest

from credit_extraction.config import BackendSettings
from credit_extraction.core.backends import BackendOutput, JobHandle, PollStatus, PrimaryOCR
from credit_extraction.core.errors import BackendError, NOT_CONFIGURED, TRANSPORT_ERROR

SETTINGS = BackendSettings(
    primary_base_url="https://ocr.test/v1",
    primary_token_url="https://auth.test/oauth2/token",
    primary_client_id="client",
    primary_client_secret="secret",
    max_retries=2,
)

DONE_PAYLOAD = {
    "status": "SUCCEEDED",
    "blocks": [
        {"BlockType": "LINE", "Text": "Credit Report", "Confidence": 98},
        {"BlockType": "LINE", "Text": "Name: John Smith", "Confidence": 92},
        {"BlockType": "KEY_VALUE", "Key": "Creditor", "Value": "Chase"},
    ],
}


class Vendor:
    """Scripted vendor: ``job_responses`` are served in order for job calls."""

    def __init__(self, *job_responses):
        self.job_responses = list(job_responses)
        self.token_calls = 0
        self.requests = []

    def __call__(self, request):
        if request.url.path == "/oauth2/token":
            self.token_calls += 1
            return httpx.Response(200, json={"access_token": f"tok-{self.token_calls}", "expires_in": 3600})
        self.requests.append(request)
        return self.job_responses.pop(0)


def make_backend(vendor, settings=SETTINGS):
    sleeps = []
    client = httpx.Client(transport=httpx.MockTransport(vendor))
    return PrimaryOCR(settings, client=client, sleep=sleeps.append), sleeps


def test_submit_returns_job_handle_and_poll_flattens_blocks():
    vendor = Vendor(
        httpx.Response(202, json={"job_id": "j-1"}, headers={"Location": "https://ocr.test/v1/jobs/j-1"}),
        httpx.Response(200, json={"status": "running"}),
        httpx.Response(200, json=DONE_PAYLOAD),
    )
    backend, _ = make_backend(vendor)

    handle = backend.submit(b"%PDF-1.4 data")
    assert handle == JobHandle(method="primary_ocr", job_id="j-1", poll_url="https://ocr.test/v1/jobs/j-1")
    assert backend.poll_status(handle).status is PollStatus.in_progress

    result = backend.poll_status(handle)
    assert result.status is PollStatus.done
    assert result.text == "Credit Report\nName: John Smith\nKV: Creditor: Chase"
    assert result.has_structured_data is True
    assert result.confidence == pytest.approx(0.95)
    assert vendor.token_calls == 1
    assert all(r.headers["Authorization"] == "Bearer tok-1" for r in vendor.requests)


def test_inline_blocks_are_returned_without_a_job():
    vendor = Vendor(httpx.Response(200, json={"blocks": DONE_PAYLOAD["blocks"]}))
    backend, _ = make_backend(vendor)
    output = backend.submit(b"%PDF-1.4 data")
    assert isinstance(output, BackendOutput)
    assert output.metadata == {"inline": True}


def test_failed_job_reports_reason():
    vendor = Vendor(httpx.Response(200, json={"status": "FAILED", "error": "unsupported file"}))
    backend, _ = make_backend(vendor)
    result = backend.poll_status(JobHandle(method="primary_ocr", job_id="j-9"))
    assert result.status is PollStatus.failed
    assert result.reason == "unsupported file"
    assert str(vendor.requests[0].url) == "https://ocr.test/v1/jobs/j-9"


def test_retries_server_errors_with_exponential_backoff():
    vendor = Vendor(
        httpx.Response(503),
        httpx.Response(429),
        httpx.Response(200, json={"job_id": "j-2"}),
    )
    backend, sleeps = make_backend(vendor)
    assert backend.submit(b"data").job_id == "j-2"
    assert sleeps == [1.0, 2.0]


def test_gives_up_after_max_retries():
    vendor = Vendor(*[httpx.Response(500) for _ in range(3)])
    backend, sleeps = make_backend(vendor)
    with pytest.raises(BackendError) as exc:
        backend.submit(b"data")
    assert exc.value.code == TRANSPORT_ERROR
    assert exc.value.transient is True
    assert len(sleeps) == 2


def test_unauthorized_refreshes_token_once():
    vendor = Vendor(httpx.Response(401), httpx.Response(200, json={"id": "j-3"}))
    backend, sleeps = make_backend(vendor)
    assert backend.submit(b"data").job_id == "j-3"
    assert vendor.token_calls == 2
    assert vendor.requests[-1].headers["Authorization"] == "Bearer tok-2"
    assert sleeps == []


def test_client_errors_are_not_retried():
    vendor = Vendor(httpx.Response(400))
    backend, sleeps = make_backend(vendor)
    with pytest.raises(BackendError) as exc:
        backend.submit(b"data")
    assert exc.value.transient is False
    assert sleeps == []


def test_missing_credentials_fail_without_network():
    vendor = Vendor()
    settings = BackendSettings(primary_base_url="https://ocr.test/v1", primary_client_id=None)
    backend, _ = make_backend(vendor, settings)
    with pytest.raises(BackendError) as exc:
        backend.submit(b"data")
    assert exc.value.code == NOT_CONFIGURED
    assert vendor.token_calls == 0


def test_empty_and_oversize_documents_are_refused():
    backend, _ = make_backend(Vendor(), BackendSettings(max_document_bytes=4, primary_client_id="c"))
    with pytest.raises(BackendError):
        backend.submit(b"")
    with pytest.raises(BackendError) as exc:
        backend.submit(b"12345")
    assert "limit is 4" in exc.value.message
