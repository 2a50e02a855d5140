"""
Adapter tests with the HTTP layer replaced. No network access.

Run locally:
    python -m pytest roomstage/tests/test_providers.py -v
"""

from __future__ import annotations

import base64

import pytest
import requests

from roomstage.config import config
from roomstage.errors import ProviderConfigError
from roomstage.services.staging_providers import (
    GeminiProvider,
    PredictionStatus,
    ReplicateError,
    ReplicateProvider,
)
from roomstage.services.staging_providers import base as provider_base
from roomstage.services.staging_providers import gemini_provider, replicate_provider


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text="", headers=None, content=b""):
        self.status_code = status_code
        self._payload = payload
        self.text = text
        self.headers = headers or {}
        self.content = content

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class Recorder:
    def __init__(self, response):
        self.response = response
        self.calls = []

    def __call__(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


@pytest.fixture
def credentials(monkeypatch):
    monkeypatch.setattr(config, "GEMINI_API_KEY", "gemini-key")
    monkeypatch.setattr(config, "REPLICATE_API_TOKEN", "r8-token")
    monkeypatch.setattr(config, "REPLICATE_MODEL_VERSION", "")


class TestGemini:

    def test_returns_inline_image(self, credentials, monkeypatch):
        image = b"\x89PNGstaged"
        post = Recorder(FakeResponse(payload={
            "candidates": [{"content": {"parts": [
                {"text": "Here is the staged room."},
                {"inlineData": {"mimeType": "image/png", "data": base64.b64encode(image).decode()}},
            ]}}]
        }))
        monkeypatch.setattr(gemini_provider.requests, "post", post)

        result = GeminiProvider().stage_image_sync(b"room", "image/jpeg", "living-room", "modern", "job-1")

        assert result.success is True
        assert result.image_data == image
        assert result.mime_type == "image/png"
        url, kwargs = post.calls[0]
        assert url.endswith(f"/models/{config.GEMINI_IMAGE_MODEL}:generateContent")
        assert kwargs["headers"]["x-goog-api-key"] == "gemini-key"

    def test_text_only_response_is_a_failure(self, credentials, monkeypatch):
        monkeypatch.setattr(gemini_provider.requests, "post", Recorder(FakeResponse(payload={
            "candidates": [{"content": {"parts": [{"text": "I can't edit this image."}]}}]
        })))
        result = GeminiProvider().stage_image_sync(b"room", "image/jpeg", "kitchen", "modern", "job-1")
        assert result.success is False
        assert result.error == "I can't edit this image."

    def test_http_error_is_a_failure_not_an_exception(self, credentials, monkeypatch):
        monkeypatch.setattr(gemini_provider.requests, "post", Recorder(FakeResponse(429, text="quota exceeded")))
        result = GeminiProvider().stage_image_sync(b"room", "image/jpeg", "kitchen", "modern", "job-1")
        assert result.success is False
        assert "429" in result.error

    def test_connection_error_is_a_failure(self, credentials, monkeypatch):
        monkeypatch.setattr(
            gemini_provider.requests, "post", Recorder(requests.exceptions.ConnectionError("refused"))
        )
        result = GeminiProvider().stage_image_sync(b"room", "image/jpeg", "kitchen", "modern", "job-1")
        assert result.success is False

    def test_missing_key_raises(self, monkeypatch):
        monkeypatch.setattr(config, "GEMINI_API_KEY", "")
        with pytest.raises(ProviderConfigError):
            GeminiProvider().stage_image_sync(b"room", "image/jpeg", "kitchen", "modern", "job-1")


class TestReplicate:

    def test_prediction_request_carries_webhook(self, credentials, monkeypatch):
        post = Recorder(FakeResponse(201, payload={"id": "pred-abc", "status": "starting"}))
        monkeypatch.setattr(replicate_provider.requests, "post", post)

        handle = ReplicateProvider().stage_image_async(
            b"room", "image/jpeg", "bedroom-master", "coastal", "job-1",
            webhook_url="https://api.roomstage.test/api/webhooks/replicate",
        )

        assert handle.prediction_id == "pred-abc"
        assert handle.estimated_seconds == 30
        url, kwargs = post.calls[0]
        assert url.endswith("/predictions")
        body = kwargs["json"]
        assert body["webhook"] == "https://api.roomstage.test/api/webhooks/replicate"
        assert body["webhook_events_filter"] == ["completed"]
        assert body["input"]["image"].startswith("data:image/jpeg;base64,")
        assert kwargs["headers"]["Authorization"] == "Bearer r8-token"

    def test_no_webhook_fields_without_url(self, credentials, monkeypatch):
        post = Recorder(FakeResponse(201, payload={"id": "pred-abc"}))
        monkeypatch.setattr(replicate_provider.requests, "post", post)
        ReplicateProvider().stage_image_async(b"room", "image/jpeg", "kitchen", "modern", "job-1")
        assert "webhook" not in post.calls[0][1]["json"]

    def test_vendor_refusal_raises_typed_error(self, credentials, monkeypatch):
        monkeypatch.setattr(
            replicate_provider.requests, "post",
            Recorder(FakeResponse(422, payload={"detail": "Invalid version"}, text="Invalid version")),
        )
        with pytest.raises(ReplicateError) as exc:
            ReplicateProvider().stage_image_async(b"room", "image/jpeg", "kitchen", "modern", "job-1")
        assert exc.value.status_code == 422
        assert exc.value.message == "Invalid version"

    def test_prediction_status(self, credentials, monkeypatch):
        monkeypatch.setattr(replicate_provider.requests, "get", Recorder(FakeResponse(payload={
            "id": "pred-abc",
            "status": "succeeded",
            "output": "https://replicate.delivery/pred-abc/out.png",
            "metrics": {"predict_time": 8.25},
        })))
        status = ReplicateProvider().get_prediction_status("pred-abc")
        assert status.is_terminal
        assert status.output == ["https://replicate.delivery/pred-abc/out.png"]
        assert status.predict_time == 8.25

    def test_rate_limited_health(self, credentials, monkeypatch):
        monkeypatch.setattr(
            provider_base.requests, "get",
            Recorder(FakeResponse(429, headers={"Retry-After": "30"})),
        )
        health = ReplicateProvider().check_health()
        assert health.available is False
        assert health.rate_limited is True
        assert health.reset_at is not None


class TestPredictionStatus:

    def test_from_payload_defaults(self):
        status = PredictionStatus.from_payload({"id": "p1", "status": "processing"})
        assert status.output == []
        assert status.predict_time is None
        assert not status.is_terminal

    @pytest.mark.parametrize("vendor_status", ["succeeded", "failed", "canceled"])
    def test_terminal_statuses(self, vendor_status):
        assert PredictionStatus(id="p1", status=vendor_status).is_terminal
