from typing import TypedDict, List, Dict, Optional, Any

# ============================================================================
# Persisted Record Shapes
# ============================================================================
# JSON field names here are shared with the existing web client and must not
# be renamed (entities, documentType, completeness, riskScore, flags, ...).

class EntityRecord(TypedDict, total=False):
    """
    A single extracted fact as persisted on a document record.
    """
    key: str
    label: str
    value: Optional[str]
    confidence: float
    category: str  # party | property | financial | date | legal


class ExtractedMetadata(TypedDict, total=False):
    """
    Full extraction payload stored in the document's `metadata` column.
    """
    entities: List[EntityRecord]
    documentType: Optional[str]
    completeness: int
    riskScore: int
    flags: List[str]
    processedAt: str
    ocrMode: str  # 'mock' | 'real' | 'mock_fallback'


class DocumentRecord(TypedDict, total=False):
    """
    Document row as kept by the document store.

    Older rows carry the extraction under `extracted` instead of `metadata`;
    readers must accept both.
    """
    id: str
    filename: str
    storage_path: Optional[str]
    client_id: Optional[str]
    status: str  # uploaded, processing, extracted, checked, ready, needs_info, suspect, failed
    entities: List[EntityRecord]
    ocr_text: Optional[str]
    metadata: Optional[ExtractedMetadata]
    extracted: Optional[ExtractedMetadata]
    ai_analysis: Dict[str, Any]
    created_at: str
    updated_at: str


class ComplianceRuleRecord(TypedDict, total=False):
    """
    Operator-defined compliance rule row.

    rule_config keys depend on category:
      required_field: field, document_types, message
      value_range:    check_type, min_value, message
      cross_document: field, message
    """
    id: str
    name: str
    description: str
    category: str
    rule_config: Dict[str, Any]
    severity: str  # 'error' | 'warning'
    is_active: bool


class CheckResultRecord(TypedDict, total=False):
    """
    One persisted rule x document verdict.
    """
    case_id: str
    document_id: str
    rule_id: str
    status: str  # passed | failed | warning
    message: str
    details: Dict[str, Any]
    created_at: str


class ComplianceCaseRecord(TypedDict, total=False):
    """
    A named grouping of documents evaluated together.
    """
    id: str
    title: str
    description: Optional[str]
    client_id: Optional[str]
    document_ids: List[str]
    status: str  # pending | passed | failed
    created_at: str
    checked_at: Optional[str]


class FailureNotification(TypedDict):
    """
    Payload sent to the notification sink when a case has failed checks.
    """
    documentId: str
    filename: str
    caseId: str
    failedChecks: str
    severity: str  # 'low' | 'medium' | 'high'


# ============================================================================
# Graph States
# ============================================================================

class DocumentState(TypedDict, total=False):
    """
    State passed through the document processing graph.
    """
    # Meta Information
    document_id: str
    filename: str
    status: str

    # Source Context
    source: Optional[str]  # signed URL, file path or base64 payload
    use_mock_ocr: bool

    # OCR Output
    raw_text: str
    ocr_mode: str

    # The "Truth" (Extraction Output)
    extraction: Optional[ExtractedMetadata]
    verdict: Optional[str]

    # Side Effects
    notification_sent: bool
    errors: List[str]


class CaseState(TypedDict, total=False):
    """
    State passed through the compliance graph.
    """
    case_id: str
    rules: List[ComplianceRuleRecord]
    documents: List[DocumentRecord]

    # Engine Output
    case_status: str
    results: List[Dict[str, Any]]
    summary: Dict[str, int]
    notification: Optional[FailureNotification]

    # Side Effects
    notification_sent: bool
    errors: List[str]
