"""
n8n Webhook Client

Triggers the n8n automation workflows (email/Slack notifications) from the
backend. Each workflow has its own webhook URL configured via environment:

    N8N_DOCUMENT_UPLOADED_WEBHOOK
    N8N_DOCUMENT_PROCESSED_WEBHOOK
    N8N_COMPLIANCE_FAILED_WEBHOOK
    N8N_WEBHOOK_SECRET   (sent as x-webhook-secret)

Notifications are fire-and-forget: an unconfigured webhook is skipped and
HTTP failures come back as a WebhookResult with ok=False, so callers never
have to guard a notification with try/except.
"""
import os
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from state import FailureNotification

logger = logging.getLogger(__name__)


class N8nWebhookError(Exception):
    """Custom exception for n8n webhook errors"""
    def __init__(self, status_code: int, message: str, response: Optional[Dict] = None):
        self.status_code = status_code
        self.message = message
        self.response = response
        super().__init__(f"n8n webhook error {status_code}: {message}")


@dataclass
class N8nConfig:
    """Webhook URLs and shared secret."""
    document_uploaded_url: Optional[str] = None
    document_processed_url: Optional[str] = None
    compliance_failed_url: Optional[str] = None
    secret: Optional[str] = None

    @classmethod
    def from_env(cls) -> "N8nConfig":
        return cls(
            document_uploaded_url=os.getenv("N8N_DOCUMENT_UPLOADED_WEBHOOK") or None,
            document_processed_url=os.getenv("N8N_DOCUMENT_PROCESSED_WEBHOOK") or None,
            compliance_failed_url=os.getenv("N8N_COMPLIANCE_FAILED_WEBHOOK") or None,
            secret=os.getenv("N8N_WEBHOOK_SECRET") or None,
        )


@dataclass
class WebhookResult:
    ok: bool
    error: Optional[str] = None
    skipped: bool = False


class N8nClient:
    """
    Minimal n8n webhook client.

    Usage:
        with N8nClient() as n8n:
            n8n.notify_compliance_failed(notification)
    """

    def __init__(
        self,
        config: Optional[N8nConfig] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.config = config or N8nConfig.from_env()

        headers = {"Content-Type": "application/json"}
        if self.config.secret:
            headers["x-webhook-secret"] = self.config.secret

        self._client = httpx.Client(headers=headers, timeout=timeout, transport=transport)

    def close(self) -> None:
        """Close the HTTP client"""
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def post_webhook(self, webhook_url: str, payload: Dict[str, Any]) -> None:
        """
        POST a JSON payload to a webhook.

        Raises:
            N8nWebhookError: If the webhook answers with a non-2xx status
        """
        resp = self._client.post(webhook_url, json=payload)
        if resp.is_error:
            raise N8nWebhookError(resp.status_code, resp.text, {"url": webhook_url})

    def trigger(self, webhook_url: Optional[str], payload: Dict[str, Any]) -> WebhookResult:
        """Send a notification; never raises."""
        if not webhook_url:
            logger.warning("n8n webhook URL not configured, skipping notification")
            return WebhookResult(ok=False, error="Webhook URL not configured", skipped=True)

        try:
            self.post_webhook(webhook_url, payload)
        except N8nWebhookError as e:
            logger.error(f"n8n webhook failed: {e}")
            return WebhookResult(ok=False, error=f"HTTP {e.status_code}: {e.message}")
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f"n8n webhook error: {e}")
            return WebhookResult(ok=False, error=str(e))

        logger.info(f"n8n webhook triggered: {webhook_url[:50]}...")
        return WebhookResult(ok=True)

    # ========================================================================
    # WORKFLOWS
    # ========================================================================

    def notify_document_uploaded(
        self,
        document_id: str,
        filename: str,
        timestamp: str,
        client_id: Optional[str] = None,
        uploaded_by: Optional[str] = None,
    ) -> WebhookResult:
        return self.trigger(self.config.document_uploaded_url, {
            "documentId": document_id,
            "filename": filename,
            "clientId": client_id,
            "uploadedBy": uploaded_by or "system",
            "timestamp": timestamp,
        })

    def notify_document_processed(
        self,
        document_id: str,
        filename: str,
        status: str,
        entities: Optional[List[Dict[str, Any]]] = None,
        processing_time: float = 0,
        error: Optional[str] = None,
    ) -> WebhookResult:
        """status is 'processed' or 'failed'."""
        return self.trigger(self.config.document_processed_url, {
            "documentId": document_id,
            "filename": filename,
            "status": status,
            "entities": entities or [],
            "processingTime": processing_time,
            "error": error,
        })

    def notify_compliance_failed(self, notification: FailureNotification) -> WebhookResult:
        return self.trigger(self.config.compliance_failed_url, {
            "documentId": notification["documentId"],
            "filename": notification["filename"],
            "caseId": notification["caseId"],
            "failedChecks": notification["failedChecks"],
            "severity": notification["severity"],
        })


def send_compliance_failed(notification: FailureNotification) -> WebhookResult:
    """One-shot helper for background tasks."""
    with N8nClient() as n8n:
        return n8n.notify_compliance_failed(notification)


def send_document_processed(**kwargs: Any) -> WebhookResult:
    """One-shot helper for background tasks."""
    with N8nClient() as n8n:
        return n8n.notify_document_processed(**kwargs)
