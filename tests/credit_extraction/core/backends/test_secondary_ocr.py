import httpx
import pytest

from credit_extraction.config import BackendSettings
from credit_extraction.core.backends import SecondaryOCR
from credit_extraction.core.backends.secondary_ocr import find_text
from credit_extraction.core.errors import BackendError, NOT_CONFIGURED

SETTINGS = BackendSettings(
    secondary_endpoints=("https://ocr2.test/api/v1/a", "https://ocr2.test/api/v1/b"),
    secondary_api_key="key-123",
)


@pytest.mark.parametrize(
    "payload, expected",
    [
        ({"data": {"raw_text": "from data.raw_text"}}, "from data.raw_text"),
        ({"raw_text": "top level"}, "top level"),
        ({"data": {"text": "data text"}, "text": "ignored"}, "data text"),
        ({"ocr_text": "ocr"}, "ocr"),
        ({"pages": [{"text": "page one"}, {"text": ""}, {"text": "page two"}]}, "page one\npage two"),
        ({"result": {"blocks": ["short", "a nested string that is long enough"]}}, "a nested string that is long enough"),
        ({"raw_text": "   "}, ""),
    ],
)
def test_find_text_tolerates_response_shapes(payload, expected):
    assert find_text(payload) == expected


def test_falls_back_to_next_endpoint():
    seen = []

    def handler(request):
        seen.append((request.url.path, request.headers.get("apikey")))
        if request.url.path.endswith("/a"):
            return httpx.Response(500)
        return httpx.Response(200, json={"data": {"raw_text": "Credit report text"}})

    backend = SecondaryOCR(SETTINGS, client=httpx.Client(transport=httpx.MockTransport(handler)))
    output = backend.submit(b"%PDF-1.4")
    assert output.text == "Credit report text"
    assert output.metadata == {"endpoint": "/api/v1/b", "endpoints_tried": 2}
    assert seen == [("/api/v1/a", "key-123"), ("/api/v1/b", "key-123")]


def test_all_endpoints_failing_lists_each_reason():
    def handler(request):
        if request.url.path.endswith("/a"):
            return httpx.Response(200, json={"status": "ok"})
        return httpx.Response(200, text="not json")

    backend = SecondaryOCR(SETTINGS, client=httpx.Client(transport=httpx.MockTransport(handler)))
    with pytest.raises(BackendError) as exc:
        backend.submit(b"%PDF-1.4")
    assert exc.value.message == "/api/v1/a: no text in response; /api/v1/b: response is not JSON"
    assert "key-123" not in exc.value.message


def test_missing_api_key_is_not_configured():
    backend = SecondaryOCR(BackendSettings(secondary_api_key=None))
    with pytest.raises(BackendError) as exc:
        backend.submit(b"%PDF-1.4")
    assert exc.value.code == NOT_CONFIGURED
    assert exc.value.transient is False


def test_poll_is_not_supported():
    with pytest.raises(BackendError):
        SecondaryOCR(SETTINGS).poll_status(None)
