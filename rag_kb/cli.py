"""Command line entry point: `rag-kb`."""

from __future__ import annotations

import argparse
import json
import sys
from typing import List, Optional

from .builder import build_kb
from .config import Settings
from .embeddings import create_embeddings
from .errors import KBError
from .merge import MergeMode, build_qa_kb, merge_qa_into_kb
from .service import ChatAnswerGenerator, KnowledgeBaseService, create_chat_model


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rag-kb",
        description="Build and query a retrieval knowledge base (settings come from the environment)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    build = sub.add_parser("build", help="Rebuild the knowledge base from DOCS_DIR")
    build.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    sub.add_parser("status", help="Show corpus documents and index metadata")

    ask = sub.add_parser("ask", help="Answer a question from the knowledge base")
    ask.add_argument("question")

    merge = sub.add_parser("merge-qa", help="Merge QA datasets into a knowledge base file")
    merge.add_argument("--mode", choices=[m.value for m in MergeMode], default=MergeMode.APPEND.value)
    merge.add_argument(
        "--embed",
        action="store_true",
        help="Embed merged blocks so a built knowledge base can retrieve them",
    )
    merge.add_argument("kb_path")
    merge.add_argument("qa_files", nargs="+")

    build_qa = sub.add_parser("build-qa", help="Write a block file built only from QA datasets")
    build_qa.add_argument("--out", default="kb_qa.json")
    build_qa.add_argument("qa_files", nargs="+")

    return parser


def _print_json(payload) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _run(args: argparse.Namespace, settings: Settings) -> int:
    if args.command == "build-qa":
        build_qa_kb(args.qa_files, args.out)
        return 0

    embeddings = create_embeddings(settings.embed_model, settings.ollama_base_url)

    if args.command == "merge-qa":
        outcome = merge_qa_into_kb(
            args.kb_path,
            args.qa_files,
            mode=MergeMode(args.mode),
            embeddings_client=embeddings if args.embed else None,
            batch_size=settings.embed_batch_size,
        )
        return 0 if not outcome.skipped_files else 2

    if args.command == "build":
        print("=" * 60)
        print(f"Source directory: {settings.docs_dir}")
        print(f"Knowledge base:   {settings.kb_path}")
        print(f"Embedding model:  {settings.embed_model}")
        print(f"Target chunks:    {settings.target_chunks}")
        print("=" * 60)
        manifest = build_kb(
            corpus_dir=settings.docs_dir,
            kb_path=settings.kb_path,
            embeddings_client=embeddings,
            embed_model=settings.embed_model,
            chat_model=settings.chat_model,
            target_chunks=settings.target_chunks,
            batch_size=settings.embed_batch_size,
            confirm=not args.yes,
        )
        _print_json(manifest.to_json_dict())
        return 0

    service = KnowledgeBaseService(
        settings,
        embeddings,
        ChatAnswerGenerator(create_chat_model(settings)),
        show_progress=True,
    )
    if args.command == "status":
        _print_json(service.status().to_json_dict())
        return 0

    result = service.ask(args.question)
    _print_json(result.to_json_dict())
    return 0 if result.ok else 1


def main(argv: Optional[List[str]] = None) -> None:
    args = _build_parser().parse_args(argv)
    settings = Settings.from_env()
    try:
        code = _run(args, settings)
    except (KBError, OSError, ValueError) as exc:
        print(f"[rag-kb] failed: {exc}", file=sys.stderr, flush=True)
        raise SystemExit(1) from exc
    raise SystemExit(code)


if __name__ == "__main__":
    main()
