"""Merge question/answer datasets into knowledge base block files."""

from __future__ import annotations

import re
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from langchain_core.embeddings import Embeddings
from tqdm import tqdm

from .embeddings import DEFAULT_BATCH_SIZE, embed_texts
from .errors import MalformedDatasetError
from .schemas import ChunkRecord, QABlock
from .utils import backup_path, fold_text, read_json, utc_isoformat, write_json_atomic


# Dataset shapes, tried in order: a bare list, then these wrapper keys.
QA_LIST_KEYS = ("items", "qa", "qas", "data", "blocks")

QUESTION_KEYS = ("question", "q", "pregunta")
ANSWER_KEYS = ("answer", "a", "respuesta")
VARIANT_KEYS = ("variants", "variantes")
TAG_KEYS = ("tags", "etiquetas", "keywords", "t")
DOC_KEYS = ("doc", "document", "documento", "source_doc")
SECTION_KEYS = ("source_section", "section", "seccion")

_QUESTION_LINE_RE = re.compile(r"^\s*Q:\s*(.+)$", re.MULTILINE)
_SLUG_RE = re.compile(r"[^a-z0-9]+")


class MergeMode(str, Enum):
    APPEND = "append"
    REPLACE = "replace"


class DedupeKey(str, Enum):
    QUESTION = "question"
    QUESTION_ANSWER = "question_answer"


def pick_key(sample: Any, candidates: Sequence[str], fallback: str) -> str:
    """First candidate present in sample, else fallback."""
    if isinstance(sample, dict):
        for key in candidates:
            if key in sample:
                return key
    return fallback


def slugify(value: str) -> str:
    return _SLUG_RE.sub("_", fold_text(value)).strip("_")[:48]


def decode_qa_payload(payload: Any, source: str = "<payload>") -> List[Dict[str, Any]]:
    """
    Extract the QA record list from a decoded dataset file.

    Raises:
        MalformedDatasetError: If no record list is found
    """
    records = None
    if isinstance(payload, list):
        records = payload
    elif isinstance(payload, dict):
        for key in QA_LIST_KEYS:
            if isinstance(payload.get(key), list):
                records = payload[key]
                break
    if records is None:
        raise MalformedDatasetError(
            f"{source}: expected a JSON array or an object with one of {list(QA_LIST_KEYS)}",
            path=source,
        )
    return [record for record in records if isinstance(record, dict)]


def _as_string_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, list):
        return [str(part).strip() for part in value if str(part).strip()]
    return []


@dataclass
class QAItem:
    question: str
    answer: str
    variants: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    doc: str = ""
    section: str = ""


@dataclass(frozen=True)
class QAFields:
    """Field names of one dataset, resolved once from a sample record."""
    question: str = "question"
    answer: str = "answer"
    variants: str = "variants"
    tags: str = "tags"
    doc: str = "doc"
    section: str = "source_section"

    @classmethod
    def resolve(cls, sample: Any) -> "QAFields":
        return cls(
            question=pick_key(sample, QUESTION_KEYS, "question"),
            answer=pick_key(sample, ANSWER_KEYS, "answer"),
            variants=pick_key(sample, VARIANT_KEYS, "variants"),
            tags=pick_key(sample, TAG_KEYS, "tags"),
            doc=pick_key(sample, DOC_KEYS, "doc"),
            section=pick_key(sample, SECTION_KEYS, "source_section"),
        )

    def read(self, record: Dict[str, Any]) -> QAItem:
        def text(key: str) -> str:
            value = record.get(key)
            return str(value).strip() if value is not None else ""

        return QAItem(
            question=text(self.question),
            answer=text(self.answer),
            variants=_as_string_list(record.get(self.variants)),
            tags=list(dict.fromkeys(_as_string_list(record.get(self.tags)))),
            doc=text(self.doc),
            section=text(self.section),
        )


@dataclass(frozen=True)
class BlockSchema:
    """Key names used by the blocks of a target knowledge base file."""
    text_key: str = "text"
    doc_key: str = "doc"
    page_key: str = "p"
    id_key: str = "id"
    tags_key: str = "tags"
    type_key: str = "type"

    @classmethod
    def detect(cls, blocks: Sequence[Any]) -> "BlockSchema":
        sample = next((block for block in blocks if isinstance(block, dict)), {})
        return cls(
            text_key=pick_key(sample, ("text", "content", "chunk", "body"), "text"),
            doc_key=pick_key(sample, ("doc", "source", "fuente", "file", "document"), "doc"),
            page_key=pick_key(sample, ("p", "page", "pages", "pagina"), "p"),
            id_key=pick_key(sample, ("id", "key", "uid"), "id"),
            tags_key=pick_key(sample, ("tags", "etiquetas"), "tags"),
            type_key=pick_key(sample, ("type", "kind"), "type"),
        )

    def to_record(self, block: QABlock) -> Dict[str, Any]:
        return {
            self.id_key: block.id,
            self.type_key: "qa",
            self.doc_key: block.source,
            self.page_key: block.meta.get("section", ""),
            "title": block.title,
            self.text_key: block.text,
            self.tags_key: list(block.tags),
            "qa_meta": {"topic": block.meta.get("topic"), "question": block.meta.get("question")},
        }


def qa_block_text(item: QAItem) -> str:
    """Question, variants, tags and answer in one searchable text."""
    lines = [f"Q: {item.question}"]
    if item.variants:
        lines.append(f"Variants: {' | '.join(item.variants)}")
    if item.tags:
        lines.append(f"Tags: {', '.join(item.tags)}")
    lines.append("")
    lines.append(f"A: {item.answer}")
    return "\n".join(lines)


def dedupe_key(item: QAItem, key: DedupeKey) -> str:
    question = fold_text(item.question)
    if not question:
        return ""
    if key is DedupeKey.QUESTION_ANSWER:
        return f"{question}\n{fold_text(item.answer)}"
    return question


def existing_question_keys(blocks: Iterable[Any], schema: BlockSchema) -> Set[str]:
    """Folded `Q:` lines of blocks already in the target file."""
    keys: Set[str] = set()
    for block in blocks:
        if not isinstance(block, dict):
            continue
        match = _QUESTION_LINE_RE.search(str(block.get(schema.text_key) or ""))
        if match:
            keys.add(fold_text(match.group(1)))
    return keys


def _load_dataset(path: Union[str, Path]) -> List[Dict[str, Any]]:
    try:
        payload = read_json(path)
    except (OSError, ValueError) as exc:
        raise MalformedDatasetError(f"{path}: {exc}", path=str(path)) from exc
    return decode_qa_payload(payload, str(path))


def collect_qa_blocks(
    qa_paths: Sequence[Union[str, Path]],
    seen: Optional[Set[str]] = None,
    dedupe: DedupeKey = DedupeKey.QUESTION,
    start: int = 0,
) -> Tuple[List[QABlock], List[str]]:
    """
    Turn QA dataset files into blocks, skipping duplicates and bad files.

    Args:
        qa_paths: Dataset files (arrays, or objects wrapping an array)
        seen: Dedup keys already present; updated in place
        dedupe: Whether the answer is part of the dedup key
        start: Number of blocks that precede these (used for ids)

    Returns:
        (blocks, skipped_file_paths)
    """
    seen = set() if seen is None else seen
    blocks: List[QABlock] = []
    skipped: List[str] = []

    for qa_path in qa_paths:
        try:
            records = _load_dataset(qa_path)
        except MalformedDatasetError as exc:
            tqdm.write(f"[WARN] skipping dataset: {exc}")
            skipped.append(str(qa_path))
            continue
        if not records:
            continue

        fields = QAFields.resolve(records[0])
        stem = Path(qa_path).stem
        topic = slugify(stem) or "qa"

        for record in records:
            item = fields.read(record)
            key = dedupe_key(item, dedupe)
            if not key or key in seen:
                continue
            seen.add(key)
            number = start + len(blocks) + 1
            blocks.append(
                QABlock(
                    id=f"qa-{topic}-{number:03d}",
                    title=item.question[:140],
                    source=item.doc or stem,
                    text=qa_block_text(item),
                    tags=item.tags,
                    meta={"topic": topic, "question": item.question, "section": item.section},
                )
            )

    return blocks, skipped


@dataclass
class MergeOutcome:
    blocks: List[Dict[str, Any]]
    added: List[Dict[str, Any]]
    skipped_files: List[str]
    mode: MergeMode
    backup_path: Optional[Path] = None


def merge_qa(
    existing_blocks: Sequence[Any],
    qa_paths: Sequence[Union[str, Path]],
    mode: MergeMode = MergeMode.APPEND,
    keep_documents: bool = False,
) -> MergeOutcome:
    """
    Merge QA datasets into a list of existing blocks.

    In append mode the existing blocks are kept and their questions count as
    already present. In replace mode the existing blocks are dropped and
    duplicates are only detected among the blocks produced by this merge;
    with `keep_documents` only earlier QA blocks are dropped and document
    chunks stay. New blocks use the key names detected from the first
    existing block.
    """
    mode = MergeMode(mode)
    schema = BlockSchema.detect(existing_blocks)

    if mode is MergeMode.REPLACE:
        kept: List[Any] = []
        if keep_documents:
            kept = [
                block
                for block in existing_blocks
                if not (isinstance(block, dict) and block.get(schema.type_key) == "qa")
            ]
        seen: Set[str] = set()
    else:
        kept = list(existing_blocks)
        seen = existing_question_keys(kept, schema)

    blocks, skipped = collect_qa_blocks(qa_paths, seen=seen, start=len(kept))
    added = [schema.to_record(block) for block in blocks]
    return MergeOutcome(blocks=kept + added, added=added, skipped_files=skipped, mode=mode)


@dataclass
class _Container:
    """Where the blocks live inside a target file."""
    kind: str
    root: Any
    blocks: List[Any]

    @classmethod
    def detect(cls, payload: Any) -> "_Container":
        if isinstance(payload, list):
            return cls("array", payload, payload)
        if isinstance(payload, dict):
            if isinstance(payload.get("chunks"), list):
                return cls("chunks", payload, payload["chunks"])
            if isinstance(payload.get("blocks"), list):
                return cls("blocks", payload, payload["blocks"])
            return cls("blocks", payload, [])
        raise MalformedDatasetError("Knowledge base file must hold a JSON array or object")

    def with_blocks(self, blocks: List[Any]) -> Any:
        if self.kind == "array":
            return blocks
        root = dict(self.root)
        root[self.kind] = blocks
        if self.kind == "chunks" and isinstance(root.get("meta"), dict):
            root["meta"] = dict(root["meta"], chunkCount=len(blocks))
        return root


def _attach_chunk_fields(
    outcome: MergeOutcome,
    schema: BlockSchema,
    embeddings_client: Optional[Embeddings],
    batch_size: int,
) -> None:
    """Give merged blocks chunk indices and embeddings so they are retrievable."""
    per_doc: Dict[str, int] = {}
    kept = outcome.blocks[: len(outcome.blocks) - len(outcome.added)]
    for block in kept:
        if isinstance(block, dict):
            doc = str(block.get(schema.doc_key, ""))
            per_doc[doc] = max(per_doc.get(doc, 0), int(block.get("chunkIndex", -1)) + 1)
    for record in outcome.added:
        doc = str(record[schema.doc_key])
        record["chunkIndex"] = per_doc.get(doc, 0)
        per_doc[doc] = record["chunkIndex"] + 1
        if schema.id_key == "id":
            record["id"] = ChunkRecord.make_id(doc, record["chunkIndex"])

    if embeddings_client is None:
        if outcome.added:
            tqdm.write("[WARN] no embeddings client: merged QA blocks will not be retrievable")
        return
    vectors = embed_texts(
        embeddings_client,
        [record[schema.text_key] for record in outcome.added],
        batch_size=batch_size,
    )
    for record, vector in zip(outcome.added, vectors):
        record["embedding"] = vector


def merge_qa_into_kb(
    kb_path: Union[str, Path],
    qa_paths: Sequence[Union[str, Path]],
    mode: MergeMode = MergeMode.APPEND,
    embeddings_client: Optional[Embeddings] = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
    now: Optional[Callable[[], datetime]] = None,
) -> MergeOutcome:
    """
    Merge QA datasets into a knowledge base file in place.

    The file may be a block array, an object with `blocks`, or a built
    knowledge base (`meta` + `chunks`). For a built knowledge base the new
    blocks get chunk indices and, when an embeddings client is given,
    embeddings. A timestamped backup is written before the file is replaced.

    Raises:
        MalformedDatasetError: If the target file has an unusable shape
        EmbeddingProviderError: If embedding the new blocks fails
    """
    kb_path = Path(kb_path)
    container = _Container.detect(read_json(kb_path))
    # Document chunks of a built index belong to its signature; replace never drops them.
    outcome = merge_qa(container.blocks, qa_paths, mode, keep_documents=container.kind == "chunks")

    if container.kind == "chunks":
        _attach_chunk_fields(outcome, BlockSchema.detect(container.blocks), embeddings_client, batch_size)

    moment = now() if now else datetime.now(timezone.utc)
    outcome.backup_path = backup_path(kb_path, moment)
    shutil.copy2(kb_path, outcome.backup_path)

    indent = None if container.kind == "chunks" else 2
    write_json_atomic(kb_path, container.with_blocks(outcome.blocks), indent=indent)

    print(f"Merge summary: added={len(outcome.added)} QA blocks, total={len(outcome.blocks)}, mode={outcome.mode.value}")
    print(f"Backup written: {outcome.backup_path}")
    return outcome


def build_qa_kb(
    qa_paths: Sequence[Union[str, Path]],
    out_path: Union[str, Path],
    now: Optional[Callable[[], datetime]] = None,
) -> List[QABlock]:
    """
    Write a standalone block file built only from QA datasets.

    Records are deduplicated on the normalized (question, answer) pair.
    """
    blocks, _ = collect_qa_blocks(qa_paths, dedupe=DedupeKey.QUESTION_ANSWER)
    moment = now() if now else datetime.now(timezone.utc)
    payload = {
        "version": 1,
        "createdAt": utc_isoformat(moment),
        "blocks": [block.model_dump() for block in blocks],
    }
    write_json_atomic(out_path, payload, indent=2)
    print(f"QA knowledge base written: {out_path} | blocks={len(blocks)}")
    return blocks
