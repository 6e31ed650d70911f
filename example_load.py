#!/usr/bin/env python3
"""Example: Load and query a knowledge base."""

import sys

from rag_kb import EmbeddingProviderError, load_kb, retrieve
from rag_kb.config import Settings
from rag_kb.embeddings import create_embeddings


def main():
    settings = Settings.from_env()

    kb = load_kb(settings.kb_path)
    if kb is None:
        print(f"Error: Knowledge base not found: {settings.kb_path}")
        print("Run example_build.py first or set KB_PATH environment variable")
        sys.exit(1)

    print("=" * 60)
    print("Knowledge Base Query Example")
    print("=" * 60)
    if kb.manifest:
        print(f"  - Created at:     {kb.manifest.created_at}")
        print(f"  - Document count: {kb.manifest.doc_count}")
    print(f"  - Chunks:         {len(kb.chunks)} vectors, {kb.dimension} dimensions")
    print()

    embeddings = create_embeddings(settings.embed_model, settings.ollama_base_url)

    print("Enter queries (or 'quit' to exit)")
    print()

    while True:
        query = input("Query: ").strip()
        if not query or query.lower() in ("quit", "exit", "q"):
            break

        print()
        try:
            results = retrieve(
                kb, query, embeddings, top_k=settings.top_k, per_doc_cap=settings.per_doc_cap
            )
        except EmbeddingProviderError as e:
            print(f"Error: {e}", file=sys.stderr)
            print()
            continue

        for rank, result in enumerate(results, start=1):
            print(f"[{rank}] Score: {result.score:.4f}")
            print(f"    Doc:   {result.doc} (chunk {result.chunk_index})")
            excerpt = result.text
            if len(excerpt) > 150:
                excerpt = excerpt[:150].rstrip() + "..."
            print(f"    Text:  {excerpt}")
            print()

    print("Goodbye!")


if __name__ == "__main__":
    main()
