#!/usr/bin/env python3
"""Example: Ingest a text file into a knowledge base."""

import os
import sys

from kb_rag import KnowledgeRagError, KnowledgeService, get_settings
from kb_rag.log import setup_logging


def main():
    # Configuration
    file_path = os.getenv("FILE_PATH", "./docs/handbook.md")
    kb_id = os.getenv("KB_ID", "")
    kb_name = os.getenv("KB_NAME", "Documents")

    settings = get_settings()
    setup_logging()

    if not os.path.isfile(file_path):
        print(f"Error: File not found: {file_path}")
        print("Set FILE_PATH environment variable or create ./docs/handbook.md")
        sys.exit(1)

    print("=" * 60)
    print("Knowledge Base Ingestion")
    print("=" * 60)
    print(f"File:             {file_path}")
    print(f"Registry:         {settings.registry_path}")
    print(f"Vector backend:   {settings.vector_backend}")
    print(f"Embedding model:  {settings.embedding_model}")
    print(f"Ollama base URL:  {settings.ollama_base_url}")
    print(f"Chunk size:       {settings.chunk_size}")
    print(f"Chunk overlap:    {settings.chunk_overlap}")
    print("=" * 60)
    print()

    service = KnowledgeService.from_settings(settings)

    try:
        if kb_id:
            kb = service.registry.get_knowledge_base(kb_id)
            if kb is None:
                print(f"Error: Knowledge base not found: {kb_id}", file=sys.stderr)
                sys.exit(1)
        else:
            kb = service.create_knowledge_base(kb_name, f"Created by {os.path.basename(__file__)}")

        result = service.ingest_file(kb.id, os.path.basename(file_path), file_path)

        print()
        print("=" * 60)
        print("Ingestion completed successfully!")
        print("=" * 60)
        print(f"Knowledge base: {kb.name} ({kb.id})")
        print(f"File id:        {result.source_file_id}")
        print(f"Chunk count:    {result.chunk_count}")
        print(f"Files in KB:    {len(service.list_files(kb.id))}")
        print("=" * 60)

    except KnowledgeRagError as e:
        print(f"\nError during ingestion [{e.kind}]: {e.detail}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
