"""
Tests for the n8n webhook client.

Requests go through httpx.MockTransport; nothing leaves the process.
"""

import os
import json
from unittest.mock import patch

import httpx
import pytest

from n8n_client import N8nClient, N8nConfig, N8nWebhookError, send_compliance_failed


COMPLIANCE_URL = "https://n8n.example.com/webhook/compliance-failed"
PROCESSED_URL = "https://n8n.example.com/webhook/document-processed"


@pytest.fixture
def captured():
    return []


@pytest.fixture
def make_client(captured):
    def factory(status_code=200, secret="s3cret", **urls):
        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(status_code, text="workflow error" if status_code >= 400 else "ok")

        config = N8nConfig(
            compliance_failed_url=urls.get("compliance", COMPLIANCE_URL),
            document_processed_url=urls.get("processed", PROCESSED_URL),
            secret=secret,
        )
        return N8nClient(config=config, transport=httpx.MockTransport(handler))
    return factory


@pytest.fixture
def notification():
    return {
        "documentId": "d1",
        "filename": "deed.pdf",
        "caseId": "case-1",
        "failedChecks": "• Buyer Required: Buyer name is required",
        "severity": "low",
    }


class TestN8nConfig:
    def test_from_env(self):
        env = {
            "N8N_COMPLIANCE_FAILED_WEBHOOK": COMPLIANCE_URL,
            "N8N_DOCUMENT_PROCESSED_WEBHOOK": "",
            "N8N_WEBHOOK_SECRET": "abc",
        }
        with patch.dict(os.environ, env, clear=True):
            config = N8nConfig.from_env()
        assert config.compliance_failed_url == COMPLIANCE_URL
        assert config.document_processed_url is None
        assert config.secret == "abc"


class TestNotifyComplianceFailed:
    """Tests for the compliance-failed workflow."""

    def test_posts_payload_with_secret(self, make_client, captured, notification):
        with make_client() as n8n:
            result = n8n.notify_compliance_failed(notification)

        assert result.ok
        assert len(captured) == 1
        request = captured[0]
        assert str(request.url) == COMPLIANCE_URL
        assert request.method == "POST"
        assert request.headers["x-webhook-secret"] == "s3cret"
        assert json.loads(request.content) == notification

    def test_no_secret_header_when_unset(self, make_client, captured, notification):
        with make_client(secret=None) as n8n:
            n8n.notify_compliance_failed(notification)
        assert "x-webhook-secret" not in captured[0].headers

    def test_unconfigured_is_skipped(self, make_client, captured, notification):
        with make_client(compliance=None) as n8n:
            result = n8n.notify_compliance_failed(notification)
        assert not result.ok
        assert result.skipped
        assert captured == []

    def test_http_error_is_reported(self, make_client, notification):
        with make_client(status_code=500) as n8n:
            result = n8n.notify_compliance_failed(notification)
        assert not result.ok
        assert not result.skipped
        assert result.error == "HTTP 500: workflow error"


class TestNotifyDocumentProcessed:
    def test_payload(self, make_client, captured):
        with make_client() as n8n:
            n8n.notify_document_processed("d1", "deed.pdf", "processed", processing_time=1.5)
        assert json.loads(captured[0].content) == {
            "documentId": "d1",
            "filename": "deed.pdf",
            "status": "processed",
            "entities": [],
            "processingTime": 1.5,
            "error": None,
        }


class TestPostWebhook:
    def test_raises_on_error_status(self, make_client):
        with make_client(status_code=404) as n8n:
            with pytest.raises(N8nWebhookError) as exc:
                n8n.post_webhook(COMPLIANCE_URL, {})
        assert exc.value.status_code == 404

    def test_transport_error_is_reported(self, notification):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        config = N8nConfig(compliance_failed_url=COMPLIANCE_URL)
        with N8nClient(config=config, transport=httpx.MockTransport(handler)) as n8n:
            result = n8n.notify_compliance_failed(notification)
        assert not result.ok
        assert "refused" in result.error


class TestTrigger:
    def test_malformed_url_is_reported(self, make_client, captured):
        """A bad webhook URL from the environment comes back as a failed result."""
        with make_client() as n8n:
            result = n8n.trigger("http://[::1/hook", {"a": 1})
        assert not result.ok
        assert not result.skipped
        assert result.error
        assert captured == []


class TestSendComplianceFailed:
    def test_skips_without_env(self, notification):
        with patch.dict(os.environ, {}, clear=True):
            result = send_compliance_failed(notification)
        assert result.skipped
