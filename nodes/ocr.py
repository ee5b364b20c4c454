"""
OCR Node - Document Text Recognition

Turns an uploaded document (signed URL, file path, raw bytes or base64
payload) into plain text for the extraction pipeline.

- PDFs (detected by the %PDF signature) go through Docling's converter with
  Tesseract OCR enabled for image-only pages
- Images go straight to Tesseract via pytesseract
- Mock mode returns deterministic sample text so the rest of the pipeline can
  be exercised without an OCR engine installed

Both engines are optional installs. When one is missing, or the system lacks
poppler/tesseract binaries, the failure is raised as OcrError and the caller
decides whether to fall back to mock extraction (see should_fallback_to_mock).

Also home to normalize_text, which flattens raw OCR output into one
searchable blob before pattern matching.
"""

import os
import re
import base64
import binascii
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import httpx

from state import DocumentState

logger = logging.getLogger(__name__)

# Conditional import for Docling (heavy; not installed in every environment)
try:
    from docling.document_converter import DocumentConverter, PdfFormatOption
    from docling.datamodel.base_models import DocumentStream, InputFormat
    from docling.datamodel.pipeline_options import PdfPipelineOptions, TesseractOcrOptions
    DOCLING_AVAILABLE = True
except ImportError:
    DOCLING_AVAILABLE = False
    DocumentConverter = None
    PdfFormatOption = None
    DocumentStream = None
    InputFormat = None
    PdfPipelineOptions = None
    TesseractOcrOptions = None


# ============================================================================
# Text Normalization
# ============================================================================

_INNER_WHITESPACE = re.compile(r"[ \t\f\v ]+")


def normalize_text(text: Optional[str], separator: str = "\n") -> str:
    """
    Flatten raw OCR text into a single searchable blob.

    Each line is trimmed and runs of inner whitespace collapse to one space;
    blank lines are dropped and the remaining lines are joined with
    `separator`. Line breaks are kept by default so single-line patterns
    (addresses) stop at the end of their line.
    """
    if not text:
        return ""
    lines = (_INNER_WHITESPACE.sub(" ", line).strip() for line in text.splitlines())
    return separator.join(line for line in lines if line)


# ============================================================================
# Configuration
# ============================================================================

class OcrEngine(Enum):
    """Available OCR backends."""
    AUTO = "auto"  # Docling for PDFs, Tesseract for images
    TESSERACT = "tesseract"  # Tesseract for images; PDFs are rejected
    MOCK = "mock"


class OcrError(Exception):
    """Raised when a document cannot be turned into text."""


@dataclass
class OcrConfig:
    """Configuration for OCR processing."""

    # Return sample text instead of running an engine
    use_mock: bool = True

    engine: OcrEngine = OcrEngine.AUTO

    # Tesseract language codes
    languages: List[str] = field(default_factory=lambda: ["eng"])

    # Tesseract page segmentation mode (6 = single uniform block, fastest)
    tesseract_psm: int = 6

    # Timeout for fetching signed URLs, in seconds
    fetch_timeout: float = 30.0

    @classmethod
    def from_env(cls) -> "OcrConfig":
        """Build configuration from environment variables."""
        config = cls(
            # Mock stays on unless explicitly disabled
            use_mock=os.getenv("USE_MOCK_OCR", "true").lower() != "false",
            languages=[
                lang.strip()
                for lang in os.getenv("OCR_LANGUAGES", "eng").split(",")
                if lang.strip()
            ] or ["eng"],
        )
        try:
            config.engine = OcrEngine(os.getenv("OCR_ENGINE", "auto").lower())
        except ValueError:
            config.engine = OcrEngine.AUTO
        if config.engine == OcrEngine.MOCK:
            config.use_mock = True
        try:
            config.tesseract_psm = int(os.getenv("OCR_TESSERACT_PSM", "6"))
        except ValueError:
            pass
        return config


# ============================================================================
# Source Loading
# ============================================================================

def load_document_bytes(source: Union[str, bytes], timeout: float = 30.0) -> bytes:
    """
    Resolve a document source into raw bytes.

    Accepts raw bytes, an http(s) URL, a local file path, or a base64 string.
    """
    if isinstance(source, bytes):
        return source

    if not source or not isinstance(source, str):
        raise OcrError(f"Invalid source provided to OCR: {source!r}")

    if source.startswith(("http://", "https://")):
        try:
            response = httpx.get(source, timeout=timeout, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise OcrError(f"Failed to fetch document from URL: {e}") from e
        return response.content

    path = Path(source)
    if len(source) < 1024 and path.is_file():
        return path.read_bytes()

    try:
        return base64.b64decode(source, validate=True)
    except (binascii.Error, ValueError) as e:
        raise OcrError(f"Source is neither a URL, a file nor base64 data: {e}") from e


def is_pdf(data: bytes) -> bool:
    """Check the %PDF file signature."""
    return data[:4] == b"%PDF"


# ============================================================================
# Engines
# ============================================================================

def recognize_pdf(data: bytes, config: OcrConfig) -> str:
    """Convert a PDF with Docling, OCR-ing image-only pages with Tesseract."""
    if not DOCLING_AVAILABLE:
        raise OcrError("Docling is not available for PDF conversion")

    pipeline_options = PdfPipelineOptions(
        do_ocr=True,
        ocr_options=TesseractOcrOptions(lang=config.languages),
    )
    converter: Any = DocumentConverter(
        format_options={
            InputFormat.PDF: PdfFormatOption(pipeline_options=pipeline_options),
        }
    )
    stream = DocumentStream(name="document.pdf", stream=BytesIO(data))
    result = converter.convert(stream)
    return result.document.export_to_markdown()


def recognize_image(data: bytes, config: OcrConfig) -> str:
    """Run Tesseract over an image."""
    try:
        import pytesseract
        from PIL import Image
    except ImportError as e:
        raise OcrError(f"Tesseract OCR is not available: {e}") from e

    try:
        image = Image.open(BytesIO(data))
        return pytesseract.image_to_string(
            image,
            lang="+".join(config.languages),
            config=f"--psm {config.tesseract_psm}",
        )
    except pytesseract.TesseractNotFoundError as e:
        raise OcrError(f"Tesseract binary not found (ENOENT): {e}") from e


def run_ocr(source: Union[str, bytes], config: Optional[OcrConfig] = None) -> str:
    """
    Recognize the text of a document.

    Args:
        source: Signed URL, file path, raw bytes or base64 payload
        config: OCR configuration (engine, languages)

    Returns:
        Recognized plain text (may be empty)

    Raises:
        OcrError: If the source can't be loaded or no engine can read it
    """
    config = config or OcrConfig(use_mock=False)

    if config.use_mock:
        return mock_run_ocr(source if isinstance(source, str) else "bytes")

    start_time = time.time()
    data = load_document_bytes(source, timeout=config.fetch_timeout)

    if is_pdf(data) and config.engine != OcrEngine.AUTO:
        raise OcrError("PDF documents need OCR_ENGINE=auto (Docling)")

    try:
        if is_pdf(data):
            text = recognize_pdf(data, config)
        else:
            text = recognize_image(data, config)
    except OcrError:
        raise
    except Exception as e:
        raise OcrError(f"OCR processing failed: {e}") from e

    elapsed_ms = (time.time() - start_time) * 1000
    logger.info(f"OCR recognized {len(text)} chars in {elapsed_ms:.0f}ms")
    return text or ""


# ============================================================================
# Mock OCR & Fallback
# ============================================================================

MOCK_OCR_TEXT = """
SALE DEED

Registration Date: 23/10/2024
Document No: DOC/2024/17735

Buyer: Manroop Singh
Seller: Rajesh Kumar

Plot No: A-101
Address: Sector 15, Phase 2, Chandigarh
Area: 1,250 sq ft

Sale Price: Rs 75,00,000
"""

# Error fragments that mean "this environment can't OCR", not "bad document"
FALLBACK_ERROR_MARKERS = (
    "not available",
    "not found",
    "enoent",
    "poppler",
    "pdftocairo",
    "tesseract",
)


def mock_run_ocr(source: str) -> str:
    """Deterministic sample text standing in for a real OCR pass."""
    logger.info(f"Mock OCR for {source[:60]}")
    return MOCK_OCR_TEXT


def should_fallback_to_mock(error: Exception) -> bool:
    """True when an OCR failure comes from the environment, not the document."""
    message = str(error).lower()
    return any(marker in message for marker in FALLBACK_ERROR_MARKERS)


# ============================================================================
# Main Node Function
# ============================================================================

def ocr_node(state: DocumentState) -> Dict[str, Any]:
    """
    Node A: OCR

    Produces raw_text for the document. Mock mode (the default) and
    environment failures both mark the state with an ocr_mode of
    'mock' / 'mock_fallback' so the extractor uses canned results.
    """
    print("--- NODE: OCR ---")

    config = OcrConfig.from_env()
    if "use_mock_ocr" in state:
        config.use_mock = bool(state["use_mock_ocr"])

    if config.use_mock:
        print("   Running in MOCK mode (set USE_MOCK_OCR=false for real OCR)")
        return {
            "raw_text": mock_run_ocr(state.get("filename") or "mock://document"),
            "ocr_mode": "mock",
            "status": "processing",
        }

    source = state.get("source")
    if not source:
        return {
            "status": "failed",
            "errors": list(state.get("errors", [])) + [
                "no storage_path - document must be uploaded to storage first"
            ],
        }

    try:
        text = run_ocr(source, config)
    except OcrError as e:
        if should_fallback_to_mock(e):
            logger.warning(f"Real OCR failed, falling back to mock: {e}")
            return {
                "raw_text": mock_run_ocr(source),
                "ocr_mode": "mock_fallback",
                "status": "processing",
            }
        logger.error(f"OCR failed for {state.get('document_id')}: {e}")
        return {
            "status": "failed",
            "errors": list(state.get("errors", [])) + [str(e)],
        }

    print(f"   Recognized {len(text)} characters")
    return {"raw_text": text, "ocr_mode": "real", "status": "processing"}
