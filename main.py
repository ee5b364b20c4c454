import sys
from langgraph.graph import StateGraph, START, END
from dotenv import load_dotenv

# Import State
from state import CaseState, DocumentState

# Import Nodes
from nodes.ocr import ocr_node
from nodes.pipeline import extraction_node
from nodes.compliance import compliance_node, DEFAULT_RULES
from nodes.notifier import document_notifier_node, compliance_notifier_node

# Load Env
load_dotenv()


def build_processing_graph():
    """
    Constructs the document processing state machine:
    OCR -> Extractor -> Notifier
    """
    builder = StateGraph(DocumentState)

    # 1. Add Nodes
    builder.add_node("ocr", ocr_node)
    builder.add_node("extractor", extraction_node)
    builder.add_node("notifier", document_notifier_node)

    # 2. Add Edges (The Flow)
    builder.add_edge(START, "ocr")

    # Conditional logic: Did OCR produce text?
    def check_ocr(state):
        if state.get("status") == "failed":
            return "notifier"
        return "extractor"

    builder.add_conditional_edges("ocr", check_ocr)
    builder.add_edge("extractor", "notifier")
    builder.add_edge("notifier", END)

    # 3. Compile
    return builder.compile()


def build_compliance_graph():
    """
    Constructs the compliance state machine:
    Compliance -> Notifier (only when something failed)
    """
    builder = StateGraph(CaseState)

    builder.add_node("compliance", compliance_node)
    builder.add_node("notifier", compliance_notifier_node)

    builder.add_edge(START, "compliance")

    def check_failures(state):
        if state.get("notification"):
            return "notifier"
        return END

    builder.add_conditional_edges("compliance", check_failures)
    builder.add_edge("notifier", END)

    return builder.compile()


if __name__ == "__main__":
    processing = build_processing_graph()

    # Simulate a run for a document (mock OCR unless USE_MOCK_OCR=false)
    print("Starting DocCop pipeline...")
    source = sys.argv[1] if len(sys.argv) > 1 else None
    initial_state: DocumentState = {
        "document_id": "demo-document",
        "filename": "sale_deed.pdf",
        "status": "uploaded",
        "source": source,
        "errors": [],
    }
    final_state = processing.invoke(initial_state)

    extraction = final_state.get("extraction") or {}
    case_state: CaseState = {
        "case_id": "demo-case",
        "rules": DEFAULT_RULES,
        "documents": [{
            "id": "demo-document",
            "filename": "sale_deed.pdf",
            "metadata": extraction,
        }],
        "errors": [],
    }
    result = build_compliance_graph().invoke(case_state)
    print(f"Case status: {result.get('case_status')} {result.get('summary')}")
