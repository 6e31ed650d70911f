#!/usr/bin/env python3
"""Example: Build a knowledge base from documents."""

import sys

from rag_kb import EmptyCorpusError, build_kb
from rag_kb.config import Settings
from rag_kb.embeddings import create_embeddings


def main():
    settings = Settings.from_env()

    print("=" * 60)
    print("Knowledge Base Builder")
    print("=" * 60)
    print(f"Source directory: {settings.docs_dir}")
    print(f"Knowledge base:   {settings.kb_path}")
    print(f"Embedding model:  {settings.embed_model}")
    print(f"Ollama base URL:  {settings.ollama_base_url}")
    print(f"Target chunks:    {settings.target_chunks}")
    print(f"Batch size:       {settings.embed_batch_size}")
    print("=" * 60)
    print()

    embeddings = create_embeddings(settings.embed_model, settings.ollama_base_url)

    try:
        manifest = build_kb(
            corpus_dir=settings.docs_dir,
            kb_path=settings.kb_path,
            embeddings_client=embeddings,
            embed_model=settings.embed_model,
            chat_model=settings.chat_model,
            target_chunks=settings.target_chunks,
            batch_size=settings.embed_batch_size,
            confirm=True,
        )
    except EmptyCorpusError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Put PDF/TXT/MD files in DOCS_DIR first")
        sys.exit(1)
    except Exception as e:
        print(f"\nError during KB build: {e}", file=sys.stderr)
        sys.exit(1)

    print()
    print("=" * 60)
    print("Build completed successfully!")
    print("=" * 60)
    print(f"Created at:     {manifest.created_at}")
    print(f"Document count: {manifest.doc_count}")
    print(f"Chunk count:    {manifest.chunk_count}")
    print(f"Chunk size:     {manifest.chunk_size_chars} (overlap {manifest.overlap_chars})")
    print("=" * 60)


if __name__ == "__main__":
    main()
