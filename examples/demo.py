#!/usr/bin/env python3
"""Demo: Using ctxplan as a Python library.

This shows how to plan context programmatically, not just from the CLI.
"""

from datetime import datetime, timezone

from ctxplan.corpus import DocumentCorpusIndex, RawDocument
from ctxplan.models import ContextRequest
from ctxplan.planning import ContextPlanner


def make_document(doc_id: str, doc_type: str, sections: int, **meta) -> RawDocument:
    body = "\n\n".join(
        f"## Section {i}\n\n"
        f"The {doc_type.replace('-', ' ')} covers scope, milestones and owners for part {i}. "
        f"Stakeholders agreed on budget constraints and acceptance criteria."
        for i in range(1, sections + 1)
    )
    appendix = "\n\n## Appendix\n\nRevision notes and boilerplate that rarely matter."
    return RawDocument(id=doc_id, document_type=doc_type, content=f"# {doc_id}\n\n{body}{appendix}", **meta)


def main():
    # 1. Index a corpus
    raw = [
        make_document("charter", "project-charter", 40, status="approved"),
        make_document("requirements", "requirements-specification", 80),
        make_document("risks", "risk-register", 30),
        make_document("stakeholders", "stakeholder-register", 20),
        make_document("plan", "project-plan", 60),
        make_document("notes", "meeting-notes", 10),
        RawDocument(id="broken", document_type="project-charter", content=""),
    ]
    snapshot = DocumentCorpusIndex().index(raw, indexed_at=datetime.now(timezone.utc))
    print(f"Indexed {len(snapshot)} documents, {snapshot.total_tokens:,} tokens")
    for failure in snapshot.failures:
        print(f"  rejected {failure.document_id}: {failure.message}")

    planner = ContextPlanner(snapshot)

    # 2. Plenty of room: everything goes in as-is
    print("\n--- Budget 50,000 ---")
    plan = planner.plan_context(
        ContextRequest(target_document_type="technical-specification", max_tokens=50_000)
    )
    print(plan.summary())

    # 3. A tight budget forces compression and exclusions
    print("\n--- Budget 2,500 ---")
    plan = planner.plan_context(
        {"target_document_type": "technical-specification", "max_tokens": 2_500}
    )
    print(plan.summary())

    # 4. Provider-driven budget, JSON for other processes
    print("\n--- ollama, as JSON ---")
    plan = planner.plan_context(
        ContextRequest(target_document_type="risk-register", provider_id="ollama")
    )
    print(plan.to_json()[:600])


if __name__ == "__main__":
    main()
