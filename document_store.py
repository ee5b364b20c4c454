"""
Shared document storage using JSON files.
Allows main.py and server.py to share documents, rules, cases and check results.

Layout under STORAGE_DIR:
    documents/{id}.json
    rules/{id}.json
    cases/{id}.json
    check_results/{case_id}.json   (list of rows for the case)
"""
import os
import json
import logging
import uuid
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from state import CheckResultRecord, ComplianceCaseRecord, ComplianceRuleRecord, DocumentRecord

logger = logging.getLogger(__name__)

STORAGE_DIR = Path(os.getenv("DOCCOP_STORAGE_DIR") or Path(__file__).parent / "storage")

DOCUMENTS = "documents"
RULES = "rules"
CASES = "cases"
CHECK_RESULTS = "check_results"


# One lock per case id; guards the read-modify-write of check_results files.
_case_locks: Dict[str, threading.Lock] = {}
_case_locks_guard = threading.Lock()


def _case_lock(case_id: str) -> threading.Lock:
    with _case_locks_guard:
        return _case_locks.setdefault(case_id, threading.Lock())


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _collection(name: str) -> Path:
    path = Path(STORAGE_DIR) / name
    path.mkdir(parents=True, exist_ok=True)
    return path


def _save(collection: str, record_id: str, record: Dict[str, Any]) -> None:
    file_path = _collection(collection) / f"{record_id}.json"
    with open(file_path, "w") as f:
        json.dump(record, f, indent=2, default=str)


def _load(collection: str, record_id: str) -> Optional[Dict[str, Any]]:
    file_path = _collection(collection) / f"{record_id}.json"
    if not file_path.exists():
        return None
    with open(file_path, "r") as f:
        return json.load(f)


def _list(collection: str) -> List[Dict[str, Any]]:
    records = []
    for file_path in sorted(_collection(collection).glob("*.json")):
        try:
            with open(file_path, "r") as f:
                records.append(json.load(f))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Error loading {file_path}: {e}")
    return records


def _delete(collection: str, record_id: str) -> bool:
    file_path = _collection(collection) / f"{record_id}.json"
    if file_path.exists():
        file_path.unlink()
        return True
    return False


# ============================================================================
# Documents
# ============================================================================

def create_document(
    filename: str,
    storage_path: Optional[str] = None,
    client_id: Optional[str] = None,
) -> DocumentRecord:
    """Register an uploaded document with status 'uploaded'."""
    now = _now()
    document: DocumentRecord = {
        "id": str(uuid.uuid4()),
        "filename": filename,
        "storage_path": storage_path,
        "client_id": client_id,
        "status": "uploaded",
        "entities": [],
        "ocr_text": None,
        "metadata": None,
        "created_at": now,
        "updated_at": now,
    }
    save_document(document)
    return document


def save_document(document: DocumentRecord) -> None:
    """Save a document to disk."""
    _save(DOCUMENTS, document["id"], {k: v for k, v in document.items()})
    logger.debug(f"Saved document {document['id']}")


def load_document(document_id: str) -> Optional[DocumentRecord]:
    return _load(DOCUMENTS, document_id)


def list_documents(client_id: Optional[str] = None) -> List[DocumentRecord]:
    """All documents, newest first, optionally for one client."""
    documents = _list(DOCUMENTS)
    if client_id:
        documents = [d for d in documents if d.get("client_id") == client_id]
    return sorted(documents, key=lambda d: d.get("created_at", ""), reverse=True)


def update_document(document_id: str, updates: Dict[str, Any]) -> Optional[DocumentRecord]:
    """Update specific fields of a document."""
    document = load_document(document_id)
    if not document:
        return None
    document.update(updates)
    document["updated_at"] = _now()
    save_document(document)
    return document


def delete_document(document_id: str) -> bool:
    return _delete(DOCUMENTS, document_id)


# ============================================================================
# Rules
# ============================================================================

def save_rule(rule: ComplianceRuleRecord) -> ComplianceRuleRecord:
    """Save a rule, assigning an id if it has none."""
    if not rule.get("id"):
        rule = {**rule, "id": str(uuid.uuid4())}
    _save(RULES, rule["id"], dict(rule))
    return rule


def list_rules() -> List[ComplianceRuleRecord]:
    return _list(RULES)


def list_active_rules() -> List[ComplianceRuleRecord]:
    return [r for r in list_rules() if r.get("is_active", True)]


def seed_rules(rules: Sequence[ComplianceRuleRecord]) -> int:
    """Write the given rules if the store has none yet. Returns how many were written."""
    if list_rules():
        return 0
    for rule in rules:
        save_rule(rule)
    logger.info(f"Seeded {len(rules)} compliance rules")
    return len(rules)


# ============================================================================
# Cases
# ============================================================================

def create_case(
    title: str,
    document_ids: Sequence[str],
    description: Optional[str] = None,
    client_id: Optional[str] = None,
) -> ComplianceCaseRecord:
    """Create a case in 'pending' status."""
    case: ComplianceCaseRecord = {
        "id": str(uuid.uuid4()),
        "title": title,
        "description": description,
        "client_id": client_id,
        "document_ids": list(document_ids),
        "status": "pending",
        "created_at": _now(),
        "checked_at": None,
    }
    _save(CASES, case["id"], dict(case))
    return case


def load_case(case_id: str) -> Optional[ComplianceCaseRecord]:
    return _load(CASES, case_id)


def list_cases(client_id: Optional[str] = None) -> List[ComplianceCaseRecord]:
    """All cases, newest first, optionally for one client."""
    cases = _list(CASES)
    if client_id:
        cases = [c for c in cases if c.get("client_id") == client_id]
    return sorted(cases, key=lambda c: c.get("created_at", ""), reverse=True)


def update_case(case_id: str, updates: Dict[str, Any]) -> Optional[ComplianceCaseRecord]:
    case = load_case(case_id)
    if not case:
        return None
    case.update(updates)
    _save(CASES, case_id, dict(case))
    return case


def load_case_documents(case: ComplianceCaseRecord) -> List[DocumentRecord]:
    """Member documents in case order; ids that no longer exist are skipped."""
    documents = []
    for document_id in case.get("document_ids", []):
        document = load_document(document_id)
        if document is None:
            logger.warning(f"Case {case.get('id')}: document {document_id} not found")
            continue
        documents.append(document)
    return documents


# ============================================================================
# Check Results
# ============================================================================

def load_check_results(case_id: str) -> List[CheckResultRecord]:
    file_path = _collection(CHECK_RESULTS) / f"{case_id}.json"
    if not file_path.exists():
        return []
    with open(file_path, "r") as f:
        return json.load(f)


def replace_check_results(case_id: str, results: Sequence[CheckResultRecord]) -> List[CheckResultRecord]:
    """
    Store a run's results for a case.

    A new row supersedes any earlier row for the same (rule, document);
    rows for pairs the new run did not produce are kept. Concurrent runs for
    the same case are serialized within this process; separate processes
    sharing STORAGE_DIR are not coordinated.
    """
    now = _now()
    fresh = [{**r, "case_id": case_id, "created_at": now} for r in results]
    fresh_keys = {(r.get("rule_id"), r.get("document_id")) for r in fresh}

    with _case_lock(case_id):
        kept = [
            r for r in load_check_results(case_id)
            if (r.get("rule_id"), r.get("document_id")) not in fresh_keys
        ]
        rows = kept + fresh

        file_path = _collection(CHECK_RESULTS) / f"{case_id}.json"
        with open(file_path, "w") as f:
            json.dump(rows, f, indent=2, default=str)

    logger.info(f"Stored {len(fresh)} check results for case {case_id} ({len(kept)} earlier rows kept)")
    return rows
