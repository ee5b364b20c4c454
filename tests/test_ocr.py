"""
Tests for the OCR node: text normalization, configuration, source loading,
engine routing and mock fallback.

No OCR engine is needed; engines are patched where a test goes past
source loading.
"""

import os
import base64
from unittest.mock import Mock, patch

import httpx
import pytest

from nodes.ocr import (
    MOCK_OCR_TEXT,
    OcrConfig,
    OcrEngine,
    OcrError,
    is_pdf,
    load_document_bytes,
    mock_run_ocr,
    normalize_text,
    ocr_node,
    recognize_pdf,
    run_ocr,
    should_fallback_to_mock,
)


class TestNormalizeText:
    """Tests for normalize_text()."""

    def test_trims_and_collapses(self):
        text = "  Buyer:   John \t Doe \n\n   \n  Seller: Jane Roe  "
        assert normalize_text(text) == "Buyer: John Doe\nSeller: Jane Roe"

    def test_custom_separator(self):
        assert normalize_text("a\n b \n\nc", separator=" ") == "a b c"

    def test_empty(self):
        assert normalize_text("") == ""
        assert normalize_text(None) == ""
        assert normalize_text(" \n\t\n") == ""

    def test_windows_line_endings(self):
        assert normalize_text("one\r\ntwo\r\n") == "one\ntwo"


class TestOcrConfig:
    """Tests for OcrConfig.from_env()."""

    def test_defaults_to_mock(self):
        with patch.dict(os.environ, {}, clear=True):
            config = OcrConfig.from_env()
        assert config.use_mock is True
        assert config.engine == OcrEngine.AUTO
        assert config.languages == ["eng"]
        assert config.tesseract_psm == 6

    def test_real_mode(self):
        env = {"USE_MOCK_OCR": "false", "OCR_LANGUAGES": "eng, hin", "OCR_ENGINE": "tesseract"}
        with patch.dict(os.environ, env, clear=True):
            config = OcrConfig.from_env()
        assert config.use_mock is False
        assert config.languages == ["eng", "hin"]
        assert config.engine == OcrEngine.TESSERACT

    def test_mock_engine_forces_mock(self):
        with patch.dict(os.environ, {"USE_MOCK_OCR": "false", "OCR_ENGINE": "mock"}, clear=True):
            assert OcrConfig.from_env().use_mock is True

    def test_invalid_values_fall_back(self):
        env = {"OCR_ENGINE": "abbyy", "OCR_TESSERACT_PSM": "six"}
        with patch.dict(os.environ, env, clear=True):
            config = OcrConfig.from_env()
        assert config.engine == OcrEngine.AUTO
        assert config.tesseract_psm == 6


class TestLoadDocumentBytes:
    """Tests for load_document_bytes()."""

    def test_bytes_pass_through(self):
        assert load_document_bytes(b"%PDF-1.4") == b"%PDF-1.4"

    def test_base64(self):
        assert load_document_bytes(base64.b64encode(b"hello").decode()) == b"hello"

    def test_file_path(self, tmp_path):
        path = tmp_path / "scan.png"
        path.write_bytes(b"\x89PNG")
        assert load_document_bytes(str(path)) == b"\x89PNG"

    def test_url(self):
        response = Mock(content=b"%PDF-1.7")
        with patch("nodes.ocr.httpx.get", return_value=response) as mock_get:
            assert load_document_bytes("https://storage.example.com/doc.pdf?token=x") == b"%PDF-1.7"
        mock_get.assert_called_once()
        response.raise_for_status.assert_called_once()

    def test_url_failure(self):
        with patch("nodes.ocr.httpx.get", side_effect=httpx.ConnectError("refused")):
            with pytest.raises(OcrError, match="Failed to fetch"):
                load_document_bytes("https://storage.example.com/doc.pdf")

    def test_garbage(self):
        with pytest.raises(OcrError):
            load_document_bytes("not base64 !!")

    def test_empty(self):
        with pytest.raises(OcrError):
            load_document_bytes("")


class TestEngines:
    """Tests for engine routing."""

    def test_is_pdf(self):
        assert is_pdf(b"%PDF-1.4\n...")
        assert not is_pdf(b"\x89PNG\r\n")

    def test_pdf_without_docling(self):
        with patch("nodes.ocr.DOCLING_AVAILABLE", False):
            with pytest.raises(OcrError, match="not available") as exc:
                recognize_pdf(b"%PDF-1.4", OcrConfig(use_mock=False))
        assert should_fallback_to_mock(exc.value)

    def test_run_ocr_routes_pdf(self):
        with patch("nodes.ocr.recognize_pdf", return_value="Sale Deed") as pdf, \
                patch("nodes.ocr.recognize_image") as image:
            assert run_ocr(b"%PDF-1.4", OcrConfig(use_mock=False)) == "Sale Deed"
        pdf.assert_called_once()
        image.assert_not_called()

    def test_run_ocr_routes_image(self):
        with patch("nodes.ocr.recognize_image", return_value="NOC") as image:
            assert run_ocr(b"\x89PNG", OcrConfig(use_mock=False)) == "NOC"
        image.assert_called_once()

    def test_tesseract_engine_rejects_pdf(self):
        """Tesseract alone can't read a PDF; the error is not an environment one."""
        config = OcrConfig(use_mock=False, engine=OcrEngine.TESSERACT)
        with patch("nodes.ocr.recognize_pdf") as pdf, \
                patch("nodes.ocr.recognize_image") as image:
            with pytest.raises(OcrError, match="OCR_ENGINE=auto") as exc:
                run_ocr(b"%PDF-1.4", config)
        pdf.assert_not_called()
        image.assert_not_called()
        assert not should_fallback_to_mock(exc.value)

    def test_tesseract_engine_reads_images(self):
        config = OcrConfig(use_mock=False, engine=OcrEngine.TESSERACT)
        with patch("nodes.ocr.recognize_image", return_value="text") as image:
            assert run_ocr(b"\x89PNG", config) == "text"
        image.assert_called_once()

    def test_engine_crash_wrapped(self):
        with patch("nodes.ocr.recognize_image", side_effect=RuntimeError("bad image")):
            with pytest.raises(OcrError, match="OCR processing failed: bad image"):
                run_ocr(b"\x89PNG", OcrConfig(use_mock=False))

    def test_mock_config(self):
        assert run_ocr("https://x", OcrConfig(use_mock=True)) == MOCK_OCR_TEXT


class TestMockAndFallback:
    """Tests for mock OCR and the fallback decision."""

    def test_mock_text_is_deterministic(self):
        assert mock_run_ocr("a") == mock_run_ocr("b")
        assert "Buyer: Manroop Singh" in mock_run_ocr("a")

    @pytest.mark.parametrize("message", [
        "Docling is not available for PDF conversion",
        "spawn pdftocairo ENOENT",
        "Unable to get page count. Is poppler installed?",
        "Tesseract binary not found (ENOENT)",
    ])
    def test_environment_errors_fall_back(self, message):
        assert should_fallback_to_mock(OcrError(message))

    def test_document_errors_do_not_fall_back(self):
        assert not should_fallback_to_mock(OcrError("Source is neither a URL, a file nor base64 data"))


class TestOcrNode:
    """Tests for ocr_node()."""

    def test_mock_mode(self):
        result = ocr_node({"document_id": "d1", "filename": "deed.pdf", "use_mock_ocr": True})
        assert result["ocr_mode"] == "mock"
        assert result["raw_text"] == MOCK_OCR_TEXT

    def test_mock_mode_from_env(self):
        with patch.dict(os.environ, {"USE_MOCK_OCR": "true"}):
            assert ocr_node({"filename": "deed.pdf"})["ocr_mode"] == "mock"

    def test_missing_source_fails(self):
        result = ocr_node({"document_id": "d1", "use_mock_ocr": False, "errors": []})
        assert result["status"] == "failed"
        assert "storage_path" in result["errors"][0]

    def test_real_ocr(self):
        with patch("nodes.ocr.run_ocr", return_value="Sale Deed text"):
            result = ocr_node({"source": "https://x/doc.pdf", "use_mock_ocr": False})
        assert result == {"raw_text": "Sale Deed text", "ocr_mode": "real", "status": "processing"}

    def test_environment_failure_falls_back(self):
        with patch("nodes.ocr.run_ocr", side_effect=OcrError("Tesseract OCR is not available")):
            result = ocr_node({"source": "https://x/doc.pdf", "use_mock_ocr": False})
        assert result["ocr_mode"] == "mock_fallback"
        assert result["status"] == "processing"

    def test_document_failure_fails(self):
        error = OcrError("Source is neither a URL, a file nor base64 data")
        with patch("nodes.ocr.run_ocr", side_effect=error):
            result = ocr_node({"source": "???", "use_mock_ocr": False, "errors": ["earlier"]})
        assert result["status"] == "failed"
        assert result["errors"] == ["earlier", str(error)]
