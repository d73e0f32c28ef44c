#!/usr/bin/env python3
"""Example: Ask questions against the knowledge bases."""

import os
import sys

from kb_rag import KnowledgeRagError, KnowledgeService, get_settings
from kb_rag.log import setup_logging


def main():
    kb_id = os.getenv("KB_ID") or None

    settings = get_settings()
    setup_logging(os.getenv("LOG_LEVEL", "WARNING"))
    service = KnowledgeService.from_settings(settings)

    knowledge_bases = service.list_knowledge_bases()

    print("=" * 60)
    print("Knowledge Base Question Answering")
    print("=" * 60)
    print(f"Chat model:      {settings.chat_model}")
    print(f"Ollama base URL: {settings.ollama_base_url}")
    print(f"Scope:           {kb_id or 'all knowledge bases'}")
    print(f"Knowledge bases: {len(knowledge_bases)}")
    for kb in knowledge_bases:
        print(f"  - {kb.name} ({kb.id}): {len(service.list_files(kb.id))} file(s)")
    print()

    pending = service.registry.list_pending_cleanups()
    if pending:
        completed = service.retry_pending_cleanups()
        print(f"Replayed vector cleanups: {completed} of {len(pending)} completed")
        print()

    # Interactive question loop
    print("=" * 60)
    print("Enter questions (or 'quit' to exit)")
    print("=" * 60)
    print()

    while True:
        question = input("Question: ").strip()
        if not question or question.lower() in ("quit", "exit", "q"):
            break

        print()

        try:
            answer = service.ask(question, kb_id)
            print(answer)
            print()

        except KnowledgeRagError as e:
            print(f"Error [{e.kind}]: {e.detail}", file=sys.stderr)
            print()

    print("Goodbye!")


if __name__ == "__main__":
    main()
