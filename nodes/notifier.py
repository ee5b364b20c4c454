"""
Notifier Node - n8n Workflow Triggers

Last step of both graphs. Sends the "document processed" event after
extraction and the "compliance failed" event after a failing case check.
Webhook failures are recorded in `errors` and never stop the graph.
"""

import logging
from typing import Any, Dict

from state import CaseState, DocumentState
from n8n_client import N8nClient

logger = logging.getLogger(__name__)


def document_notifier_node(state: DocumentState) -> Dict[str, Any]:
    """Node D: notify n8n that a document finished processing."""
    print("--- NODE: NOTIFIER (document) ---")

    failed = state.get("status") == "failed"
    extraction = state.get("extraction") or {}
    errors = list(state.get("errors", []))

    with N8nClient() as n8n:
        result = n8n.notify_document_processed(
            document_id=state.get("document_id", ""),
            filename=state.get("filename", "unknown"),
            status="failed" if failed else "processed",
            entities=extraction.get("entities", []),
            error="; ".join(errors) if failed else None,
        )

    if not result.ok and not result.skipped:
        errors.append(f"n8n notification failed: {result.error}")

    return {"notification_sent": result.ok, "errors": errors}


def compliance_notifier_node(state: CaseState) -> Dict[str, Any]:
    """Node E: notify n8n when a case has failed checks."""
    print("--- NODE: NOTIFIER (compliance) ---")

    notification = state.get("notification")
    if not notification:
        print("   No failures, nothing to send")
        return {"notification_sent": False}

    errors = list(state.get("errors", []))
    with N8nClient() as n8n:
        result = n8n.notify_compliance_failed(notification)

    if not result.ok and not result.skipped:
        errors.append(f"n8n notification failed: {result.error}")

    print(f"   Severity {notification['severity']} -> sent={result.ok}")
    return {"notification_sent": result.ok, "errors": errors}
