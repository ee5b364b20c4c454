"""
AI Analyst - LLM Review of Extracted Documents

On-demand analyses a user can request for a processed document:

- summarize: short summary, key points and purpose
- legal_issues: missing information, red flags and compliance concerns
- validate_fields: sanity check of the extracted entities
- extract_insights: financial/timeline insights and next steps

Uses OpenAI or Anthropic through LangChain, selected by AI_PROVIDER. The
model is asked to answer in JSON; the reply is parsed (markdown code fences
are tolerated) and returned as a dict.
"""

import os
import json
import time
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)

# Check for LLM availability
try:
    from langchain_openai import ChatOpenAI
    from langchain_anthropic import ChatAnthropic
    from langchain_core.messages import HumanMessage, SystemMessage
    LLM_AVAILABLE = True
except ImportError:
    LLM_AVAILABLE = False
    ChatOpenAI = None  # type: ignore
    ChatAnthropic = None  # type: ignore
    HumanMessage = None  # type: ignore
    SystemMessage = None  # type: ignore


# ============================================================================
# Configuration
# ============================================================================

class AnalysisType(str, Enum):
    SUMMARIZE = "summarize"
    LEGAL_ISSUES = "legal_issues"
    VALIDATE_FIELDS = "validate_fields"
    EXTRACT_INSIGHTS = "extract_insights"


class AnalystUnavailableError(Exception):
    """No provider is configured (or the LangChain packages are missing)."""


class AnalystResponseError(Exception):
    """The model answered with something that isn't JSON."""


@dataclass
class AnalystConfig:
    provider: str = "openai"
    openai_api_key: str = ""
    openai_model: str = "gpt-4-turbo-preview"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-3-opus-20240229"
    temperature: float = 0.3
    max_tokens: int = 4096

    @classmethod
    def from_env(cls) -> "AnalystConfig":
        return cls(
            provider=os.getenv("AI_PROVIDER", "openai").lower(),
            openai_api_key=os.getenv("OPENAI_API_KEY", ""),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4-turbo-preview"),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY", ""),
            anthropic_model=os.getenv("ANTHROPIC_MODEL", "claude-3-opus-20240229"),
        )

    @property
    def is_configured(self) -> bool:
        if self.provider == "anthropic":
            return bool(self.anthropic_api_key)
        return bool(self.openai_api_key)


# ============================================================================
# Prompts
# ============================================================================

SYSTEM_PROMPT = (
    "You are an expert real estate document analyst. "
    "Provide accurate, structured responses in JSON format."
)

SUMMARIZE_PROMPT = """Analyze the following document and provide a concise summary.

Document Type: {document_type}
Extracted Text:
{raw_text}

Respond in JSON format:
{{
  "summary": "Brief 2-3 sentence summary of the document",
  "keyPoints": ["Point 1", "Point 2", "Point 3"],
  "documentPurpose": "The primary purpose of this document"
}}"""

LEGAL_ISSUES_PROMPT = """You are a legal expert specializing in real estate transactions. Analyze this document for potential legal issues, risks, or missing information.

Document Type: {document_type}
Extracted Entities: {entities}
Full Text: {raw_text}

Identify:
1. Missing critical information
2. Potential legal issues or red flags
3. Compliance concerns
4. Risk factors

Respond in JSON format:
{{
  "issues": [
    {{
      "severity": "high" | "medium" | "low",
      "category": "missing_info" | "legal_issue" | "compliance" | "risk",
      "title": "Brief title",
      "description": "Detailed description",
      "recommendation": "What should be done"
    }}
  ],
  "overallRisk": "low" | "medium" | "high",
  "recommendation": "Overall recommendation"
}}"""

VALIDATE_FIELDS_PROMPT = """Review the extracted entities from this {document_type} document and identify any issues.

Extracted Entities:
{entities}

Check for:
1. Missing required fields for this document type
2. Inconsistent or suspicious values
3. Format issues (dates, amounts, etc.)
4. Logical inconsistencies

Respond in JSON format:
{{
  "validationIssues": [
    {{
      "field": "field_name",
      "issue": "description of the issue",
      "severity": "error" | "warning" | "info",
      "suggestion": "how to fix it"
    }}
  ],
  "completenessScore": 0-100,
  "qualityScore": 0-100
}}"""

EXTRACT_INSIGHTS_PROMPT = """Extract actionable insights from this document.

Document Type: {document_type}
Extracted Data: {entities}
Full Text: {raw_text}{mock_note}

Provide insights including:
1. Financial analysis (if applicable)
2. Timeline and deadlines
3. Key stakeholders and their roles
4. Important clauses or conditions
5. Action items or next steps

Respond in JSON format:
{{
  "insights": [
    {{
      "title": "Insight title",
      "description": "Detailed description",
      "priority": "high" | "medium" | "low"
    }}
  ],
  "nextSteps": ["step 1", "step 2"]
}}"""

INSIGHTS_TEXT_LIMIT = 2000

MOCK_NOTE = (
    "\n\nNote: this appears to be placeholder test data (e.g. \"Manroop Singh\", "
    "\"Rajesh Kumar Sharma\"). Mention this in your analysis."
)

MOCK_MARKER_VALUES = ("Manroop Singh", "Rajesh Kumar Sharma")


def looks_like_mock_data(raw_text: str, entities: Sequence[Dict[str, Any]]) -> bool:
    """True when the document was produced by mock OCR/extraction."""
    if "Mock extracted text" in raw_text:
        return True
    if "Manroop Singh" in raw_text and "Rajesh Kumar" in raw_text:
        return True
    return any(e.get("value") in MOCK_MARKER_VALUES for e in entities)


def build_prompt(
    analysis_type: AnalysisType,
    document_type: Optional[str],
    entities: Sequence[Dict[str, Any]],
    raw_text: str,
) -> str:
    """Fill the prompt template for an analysis type."""
    doc_type = document_type or "Unknown"
    entities_json = json.dumps(list(entities), indent=2)

    if analysis_type == AnalysisType.SUMMARIZE:
        return SUMMARIZE_PROMPT.format(document_type=doc_type, raw_text=raw_text)

    if analysis_type == AnalysisType.LEGAL_ISSUES:
        return LEGAL_ISSUES_PROMPT.format(
            document_type=doc_type, entities=entities_json, raw_text=raw_text
        )

    if analysis_type == AnalysisType.VALIDATE_FIELDS:
        return VALIDATE_FIELDS_PROMPT.format(
            document_type=document_type or "real estate", entities=entities_json
        )

    text = raw_text[:INSIGHTS_TEXT_LIMIT]
    if len(raw_text) > INSIGHTS_TEXT_LIMIT:
        text += "..."
    is_mock = looks_like_mock_data(raw_text, entities)
    if is_mock:
        logger.warning("AI analysis: detected mock/test data, results may not reflect a real document")
    return EXTRACT_INSIGHTS_PROMPT.format(
        document_type=doc_type,
        entities=entities_json,
        raw_text=text,
        mock_note=MOCK_NOTE if is_mock else "",
    )


# ============================================================================
# LLM Call
# ============================================================================

def parse_json_response(response_text: str) -> Dict[str, Any]:
    """Parse a JSON reply, unwrapping a markdown code block if present."""
    if "```json" in response_text:
        response_text = response_text.split("```json")[1].split("```")[0]
    elif "```" in response_text:
        response_text = response_text.split("```")[1].split("```")[0]

    try:
        result = json.loads(response_text.strip())
    except json.JSONDecodeError as e:
        raise AnalystResponseError(f"Failed to parse AI response as JSON: {e}") from e

    if not isinstance(result, dict):
        raise AnalystResponseError("AI response is not a JSON object")
    return result


def create_llm(config: AnalystConfig) -> Any:
    """
    Build the chat model for the configured provider.

    Raises:
        AnalystUnavailableError: No API key, or LangChain not installed
    """
    if not config.is_configured:
        raise AnalystUnavailableError(
            "AI is not configured. Please set OPENAI_API_KEY or ANTHROPIC_API_KEY in environment variables."
        )
    if not LLM_AVAILABLE:
        raise AnalystUnavailableError("LangChain packages are not installed")

    if config.provider == "anthropic":
        return ChatAnthropic(  # type: ignore[call-arg]
            model_name=config.anthropic_model,
            api_key=config.anthropic_api_key,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
        )

    return ChatOpenAI(
        model=config.openai_model,
        api_key=config.openai_api_key,
        temperature=config.temperature,
        model_kwargs={"response_format": {"type": "json_object"}},
    )


def analyze_document(
    analysis_type: AnalysisType,
    document_type: Optional[str],
    entities: List[Dict[str, Any]],
    raw_text: str,
    config: Optional[AnalystConfig] = None,
    llm: Any = None,
) -> Dict[str, Any]:
    """
    Run one analysis over a processed document.

    Args:
        analysis_type: Which analysis to run
        document_type: Classified type label (may be None)
        entities: Persisted entity dicts
        raw_text: OCR text
        config: Provider configuration (defaults to environment)
        llm: Pre-built chat model; built from config when omitted

    Returns:
        Parsed JSON result of the model

    Raises:
        AnalystUnavailableError: No provider configured
        AnalystResponseError: Reply could not be parsed
    """
    if llm is None:
        llm = create_llm(config or AnalystConfig.from_env())

    start_time = time.time()
    prompt = build_prompt(analysis_type, document_type, entities, raw_text)

    messages = [
        SystemMessage(content=SYSTEM_PROMPT),
        HumanMessage(content=prompt),
    ]
    response = llm.invoke(messages)
    result = parse_json_response(str(response.content))

    elapsed_ms = (time.time() - start_time) * 1000
    logger.info(f"AI analysis '{analysis_type.value}' completed in {elapsed_ms:.0f}ms")
    return result
