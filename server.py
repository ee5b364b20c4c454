"""
FastAPI Server for the DocCop API

Provides endpoints for:
- Registering, listing and fetching documents
- Running OCR + extraction on a stored document (process)
- Extracting entities from raw text
- Managing compliance rules and cases
- Running compliance checks on a case
- On-demand AI analysis of a processed document

n8n notifications are dispatched as background tasks so a slow or broken
webhook never fails the request.
"""

import os
import time
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import BackgroundTasks, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

import document_store
from n8n_client import N8nClient, send_compliance_failed, send_document_processed
from nodes.analyst import (
    AnalysisType,
    AnalystConfig,
    AnalystResponseError,
    AnalystUnavailableError,
    analyze_document,
)
from nodes.compliance import (
    DEFAULT_RULES,
    CaseDocument,
    ComplianceRule,
    RuleConfigError,
    run_compliance_check,
)
from nodes.ocr import ocr_node
from nodes.pipeline import extract_real_estate_entities, extraction_node
from state import DocumentState

load_dotenv()

logger = logging.getLogger(__name__)


# ============================================================================
# FastAPI App
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    if os.getenv("DOCCOP_SEED_RULES", "true").lower() != "false":
        document_store.seed_rules(DEFAULT_RULES)
    yield


app = FastAPI(
    title="DocCop API",
    description="Real estate document extraction and compliance API",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS for the web client
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Pydantic Models for API
# ============================================================================

class DocumentCreateRequest(BaseModel):
    """Register an uploaded file."""
    filename: str
    storage_path: Optional[str] = None
    client_id: Optional[str] = None


class ExtractRequest(BaseModel):
    text: str = ""


class RuleRequest(BaseModel):
    """Create or replace a compliance rule."""
    id: Optional[str] = None
    name: str
    description: str = ""
    category: str
    rule_config: Dict[str, Any] = Field(default_factory=dict)
    severity: str = "error"
    is_active: bool = True


class CaseCreateRequest(BaseModel):
    title: str
    description: Optional[str] = None
    documentIds: List[str] = Field(default_factory=list)
    clientId: Optional[str] = None


class ComplianceCheckRequest(BaseModel):
    caseId: str


class AnalyzeRequest(BaseModel):
    documentId: str
    analysisType: AnalysisType


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _notify_uploaded(document_id: str, filename: str, client_id: Optional[str]) -> None:
    with N8nClient() as n8n:
        n8n.notify_document_uploaded(document_id, filename, _utc_now(), client_id=client_id)


# ============================================================================
# API Endpoints
# ============================================================================

@app.get("/api/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "doccop-api"}


# --- Documents --------------------------------------------------------------

@app.post("/api/documents")
def create_document(request: DocumentCreateRequest, background_tasks: BackgroundTasks):
    """Register an uploaded document."""
    document = document_store.create_document(
        request.filename,
        storage_path=request.storage_path,
        client_id=request.client_id,
    )
    background_tasks.add_task(_notify_uploaded, document["id"], document["filename"], request.client_id)
    return {"ok": True, "document": document}


@app.get("/api/documents")
def list_documents(client_id: Optional[str] = None):
    return document_store.list_documents(client_id=client_id)


@app.get("/api/documents/{document_id}")
def get_document(document_id: str):
    document = document_store.load_document(document_id)
    if not document:
        raise HTTPException(status_code=404, detail="Document not found")
    return document


# --- Extraction ---------------------------------------------------------------

@app.post("/api/extract")
def extract(request: ExtractRequest):
    """Run the extraction pipeline over raw text (no persistence)."""
    result = extract_real_estate_entities(request.text)
    return {**result.to_dict(), "verdict": {"status": result.verdict}}


@app.post("/api/process")
def process_document(background_tasks: BackgroundTasks, docId: str = Query(...)):
    """OCR and extract a stored document, then record its verdict."""
    document = document_store.load_document(docId)
    if not document:
        raise HTTPException(status_code=404, detail="doc not found")

    document_store.update_document(docId, {"status": "processing"})
    start_time = time.time()

    state: DocumentState = {
        "document_id": docId,
        "filename": document.get("filename") or "document.pdf",
        "status": "processing",
        "source": document.get("storage_path"),
        "errors": [],
    }
    state.update(ocr_node(state))

    if state.get("status") == "failed":
        error = "; ".join(state.get("errors", [])) or "Processing failed"
        document_store.update_document(docId, {"status": "failed"})
        background_tasks.add_task(
            send_document_processed,
            document_id=docId,
            filename=state["filename"],
            status="failed",
            error=error,
        )
        raise HTTPException(status_code=500, detail=error)

    state.update(extraction_node(state))
    extracted = state["extraction"] or {}
    verdict = state["verdict"]

    document_store.update_document(docId, {
        "status": verdict,
        "entities": extracted.get("entities", []),
        "ocr_text": state.get("raw_text"),
        "metadata": extracted,
    })

    background_tasks.add_task(
        send_document_processed,
        document_id=docId,
        filename=state["filename"],
        status="processed",
        entities=extracted.get("entities", []),
        processing_time=round(time.time() - start_time, 3),
    )

    return {
        "ok": True,
        "verdict": {"status": verdict},
        "extracted": extracted,
        "documentType": extracted.get("documentType"),
        "completeness": extracted.get("completeness"),
        "riskScore": extracted.get("riskScore"),
    }


# --- Compliance -----------------------------------------------------------------

@app.get("/api/compliance/rules")
def list_rules():
    return document_store.list_rules()


@app.post("/api/compliance/rules")
def save_rule(request: RuleRequest):
    """Create a rule; its configuration must fit its category."""
    record = request.model_dump()
    try:
        ComplianceRule.from_dict(record)
    except RuleConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"ok": True, "rule": document_store.save_rule(record)}


@app.post("/api/compliance/cases")
def create_case(request: CaseCreateRequest):
    """Group documents into a compliance case."""
    if not request.title or not request.documentIds:
        raise HTTPException(status_code=400, detail="Title and at least one document are required")

    missing = [d for d in request.documentIds if document_store.load_document(d) is None]
    if missing:
        raise HTTPException(status_code=404, detail=f"Documents not found: {', '.join(missing)}")

    case = document_store.create_case(
        request.title,
        request.documentIds,
        description=request.description,
        client_id=request.clientId,
    )
    return {"ok": True, "case": case}


@app.get("/api/compliance/cases")
def list_cases(client_id: Optional[str] = None):
    return document_store.list_cases(client_id=client_id)


@app.get("/api/compliance/cases/{case_id}")
def get_case(case_id: str):
    """Case with its latest check results."""
    case = document_store.load_case(case_id)
    if not case:
        raise HTTPException(status_code=404, detail="Case not found")
    return {
        "case": case,
        "documents": document_store.load_case_documents(case),
        "results": document_store.load_check_results(case_id),
    }


@app.post("/api/compliance/check")
def check_compliance(request: ComplianceCheckRequest, background_tasks: BackgroundTasks):
    """Evaluate every active rule against every document of a case."""
    case = document_store.load_case(request.caseId)
    if not case:
        raise HTTPException(status_code=404, detail="Case not found")

    rules: List[ComplianceRule] = []
    for record in document_store.list_active_rules():
        try:
            rules.append(ComplianceRule.from_dict(record))
        except RuleConfigError as e:
            logger.error(f"Skipping misconfigured rule: {e}")

    documents = [CaseDocument.from_record(d) for d in document_store.load_case_documents(case)]
    report = run_compliance_check(request.caseId, rules, documents)

    document_store.replace_check_results(request.caseId, report.to_records())
    document_store.update_case(request.caseId, {
        "status": report.case_status.value,
        "checked_at": _utc_now(),
    })

    if report.notification:
        background_tasks.add_task(send_compliance_failed, report.notification)

    return report.to_dict()


# --- AI Analysis ----------------------------------------------------------------

@app.post("/api/ai/analyze")
def analyze(request: AnalyzeRequest):
    """Run an LLM analysis on a processed document and store the result."""
    config = AnalystConfig.from_env()
    if not config.is_configured:
        raise HTTPException(
            status_code=503,
            detail="AI is not configured. Please set OPENAI_API_KEY or ANTHROPIC_API_KEY in environment variables.",
        )

    document = document_store.load_document(request.documentId)
    if not document:
        raise HTTPException(status_code=404, detail="Document not found")

    extraction = document.get("metadata") or document.get("extracted") or {}
    entities = document.get("entities") or extraction.get("entities") or []
    if not extraction and not entities:
        raise HTTPException(status_code=400, detail="Document must be processed with OCR first")

    raw_text = document.get("ocr_text") or extraction.get("rawText") or ""

    try:
        result = analyze_document(
            request.analysisType,
            extraction.get("documentType"),
            entities,
            raw_text,
            config=config,
        )
    except AnalystUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except AnalystResponseError as e:
        raise HTTPException(status_code=502, detail=str(e))

    ai_analysis = dict(document.get("ai_analysis") or {})
    ai_analysis[request.analysisType.value] = {**result, "analyzedAt": _utc_now()}
    document_store.update_document(request.documentId, {"ai_analysis": ai_analysis})

    return {"ok": True, "analysisType": request.analysisType.value, "result": result}


# Run with: uvicorn server:app --reload
