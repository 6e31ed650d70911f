"""Tests for QA dataset merging."""

import json
from datetime import datetime, timezone

import pytest

from rag_kb.builder import build_kb
from rag_kb.errors import MalformedDatasetError
from rag_kb.loader import is_stale, load_kb
from rag_kb.merge import (
    BlockSchema,
    MergeMode,
    QAFields,
    QAItem,
    build_qa_kb,
    decode_qa_payload,
    merge_qa,
    merge_qa_into_kb,
    qa_block_text,
)

from conftest import paragraph, write_doc


FIXED = datetime(2024, 3, 1, 9, 30, 0, 250000, tzinfo=timezone.utc)


def _write_json(path, payload):
    path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
    return path


@pytest.fixture
def qa_files(tmp_path):
    first = _write_json(
        tmp_path / "faq_a.json",
        [
            {"question": "¿Qué es UDL?", "answer": "Un marco de diseño.", "tags": ["udl"]},
            {"question": "What is RAG?", "answer": "Retrieval augmented generation."},
        ],
    )
    second = _write_json(
        tmp_path / "faq_b.json",
        {
            "items": [
                {"pregunta": "  ¿QUE es udl? ", "respuesta": "Otra respuesta.", "variantes": []},
                {"pregunta": "¿Cómo se evalúa?", "respuesta": "Con rúbricas.", "variantes": ["evaluación"]},
            ]
        },
    )
    return [first, second]


def test_qa_block_text():
    """Block text carries question, variants, tags and answer."""
    item = QAItem(question="q?", answer="a.", variants=["v1", "v2"], tags=["t1", "t2"])
    assert qa_block_text(item) == "Q: q?\nVariants: v1 | v2\nTags: t1, t2\n\nA: a."
    assert qa_block_text(QAItem(question="q?", answer="a.")) == "Q: q?\n\nA: a."


def test_decode_shapes():
    """Arrays and known wrapper keys are accepted; other shapes are rejected."""
    record = {"question": "q", "answer": "a"}
    assert decode_qa_payload([record, "junk"]) == [record]
    for key in ("items", "qa", "qas", "data", "blocks"):
        assert decode_qa_payload({key: [record]}) == [record]
    with pytest.raises(MalformedDatasetError):
        decode_qa_payload({"rows": [record]})
    with pytest.raises(MalformedDatasetError):
        decode_qa_payload("text")


def test_fields_resolved_from_sample():
    """Field names are chosen once by first match over the candidates."""
    fields = QAFields.resolve({"pregunta": "x", "respuesta": "y", "etiquetas": "a, b, a"})
    assert fields.question == "pregunta"
    assert fields.answer == "respuesta"

    item = fields.read({"pregunta": " ¿Qué? ", "respuesta": "Eso.", "etiquetas": "a, b, a"})
    assert item.question == "¿Qué?"
    assert item.tags == ["a", "b"]


def test_duplicate_question_across_files(qa_files):
    """One case/accent-insensitive duplicate removes exactly one record."""
    outcome = merge_qa([], qa_files)

    assert len(outcome.blocks) == 4 - 1
    assert outcome.skipped_files == []
    texts = [block["text"] for block in outcome.blocks]
    assert texts[0].startswith("Q: ¿Qué es UDL?")
    assert not any("Otra respuesta" in text for text in texts)
    assert [block["id"] for block in outcome.blocks] == [
        "qa-faq_a-001",
        "qa-faq_a-002",
        "qa-faq_b-003",
    ]
    assert outcome.blocks[2]["text"] == "Q: ¿Cómo se evalúa?\nVariants: evaluación\n\nA: Con rúbricas."
    assert all(block["type"] == "qa" for block in outcome.blocks)
    assert outcome.blocks[0]["doc"] == "faq_a"


def test_malformed_files_skipped(tmp_path, qa_files):
    """Unreadable or unrecognized files are skipped; the rest still merge."""
    bad_shape = _write_json(tmp_path / "bad_shape.json", {"rows": []})
    bad_json = tmp_path / "bad.json"
    bad_json.write_text("{not json", encoding="utf-8")
    missing = tmp_path / "missing.json"

    outcome = merge_qa([], [bad_shape, qa_files[0], bad_json, missing])

    assert outcome.skipped_files == [str(bad_shape), str(bad_json), str(missing)]
    assert len(outcome.blocks) == 2


def test_append_skips_existing_questions(qa_files):
    """Append keeps existing blocks and their questions count as duplicates."""
    existing = [{"id": "old-1", "text": "Q: what is rag?\n\nA: Old answer."}]

    outcome = merge_qa(existing, [qa_files[0]], MergeMode.APPEND)

    assert outcome.blocks[0] == existing[0]
    assert len(outcome.added) == 1
    assert outcome.added[0]["text"].startswith("Q: ¿Qué es UDL?")
    assert outcome.added[0]["id"] == "qa-faq_a-002"


def test_replace_drops_existing_blocks(qa_files):
    """Replace discards existing blocks and only dedupes within the merge."""
    existing = [{"id": "old-1", "text": "Q: what is rag?\n\nA: Old answer."}]

    outcome = merge_qa(existing, qa_files, "replace")

    assert outcome.mode is MergeMode.REPLACE
    assert len(outcome.blocks) == 3
    assert "old-1" not in [block["id"] for block in outcome.blocks]
    assert any(block["text"].startswith("Q: What is RAG?") for block in outcome.blocks)


def test_block_schema_follows_existing_keys(qa_files):
    """New blocks reuse the key names of the target file."""
    existing = [{"key": "k1", "kind": "doc", "source": "manual.pdf", "page": 3, "content": "Intro."}]
    schema = BlockSchema.detect(existing)
    assert (schema.text_key, schema.doc_key, schema.id_key, schema.type_key) == (
        "content",
        "source",
        "key",
        "kind",
    )

    outcome = merge_qa(existing, [qa_files[0]])
    added = outcome.added[0]
    assert set(added) >= {"key", "kind", "source", "page", "content", "title", "tags"}
    assert added["kind"] == "qa"
    assert added["content"].startswith("Q: ")


def test_merge_into_block_file(tmp_path, qa_files):
    """A {blocks} file is backed up, then updated in place."""
    kb_file = _write_json(tmp_path / "kb_udl.json", {"version": 1, "blocks": [{"id": "b1", "text": "Intro."}]})
    original = kb_file.read_text(encoding="utf-8")

    outcome = merge_qa_into_kb(kb_file, qa_files, now=lambda: FIXED)

    assert outcome.backup_path.name == "kb_udl_backup_2024-03-01T09-30-00-250Z.json"
    assert outcome.backup_path.read_text(encoding="utf-8") == original
    payload = json.loads(kb_file.read_text(encoding="utf-8"))
    assert payload["version"] == 1
    assert len(payload["blocks"]) == 1 + 3


def test_merge_into_array_file(tmp_path, qa_files):
    """A bare array file stays a bare array."""
    kb_file = _write_json(tmp_path / "blocks.json", [])
    merge_qa_into_kb(kb_file, [qa_files[0]], now=lambda: FIXED)
    payload = json.loads(kb_file.read_text(encoding="utf-8"))
    assert isinstance(payload, list)
    assert len(payload) == 2


def test_merge_into_built_index(corpus_dir, kb_path, embeddings, qa_files):
    """Merged QA blocks in a built index get chunk fields and embeddings."""
    write_doc(corpus_dir, "guide.txt", [paragraph("guide") for _ in range(2)])
    build_kb(corpus_dir, kb_path, embeddings, embed_model="test-embed", show_progress=False)
    before = load_kb(kb_path)

    merge_qa_into_kb(kb_path, qa_files, embeddings_client=embeddings, now=lambda: FIXED)

    payload = json.loads(kb_path.read_text(encoding="utf-8"))
    assert payload["meta"]["chunkCount"] == len(payload["chunks"]) == len(before.chunks) + 3
    qa_chunks = [c for c in payload["chunks"] if c.get("type") == "qa"]
    assert [(c["doc"], c["chunkIndex"], c["id"]) for c in qa_chunks] == [
        ("faq_a", 0, "faq_a::0"),
        ("faq_a", 1, "faq_a::1"),
        ("faq_b", 0, "faq_b::0"),
    ]
    assert all(len(c["embedding"]) == 26 for c in qa_chunks)

    after = load_kb(kb_path)
    assert len(after.chunks) == len(before.chunks) + 3
    assert after.manifest.docs_signature == before.manifest.docs_signature


def test_merge_into_built_index_without_embeddings(corpus_dir, kb_path, embeddings, qa_files):
    """Without an embeddings client the merged blocks are stored but not indexed."""
    write_doc(corpus_dir, "guide.txt", [paragraph("guide") for _ in range(2)])
    build_kb(corpus_dir, kb_path, embeddings, embed_model="test-embed", show_progress=False)
    before = load_kb(kb_path)

    merge_qa_into_kb(kb_path, qa_files, now=lambda: FIXED)

    payload = json.loads(kb_path.read_text(encoding="utf-8"))
    assert len(payload["chunks"]) == len(before.chunks) + 3
    assert len(load_kb(kb_path).chunks) == len(before.chunks)


def test_build_qa_kb(tmp_path):
    """Standalone QA file dedupes on the (question, answer) pair."""
    source = _write_json(
        tmp_path / "faq.json",
        {
            "qa": [
                {"q": "What is RAG?", "a": "Retrieval.", "t": "rag, search, rag"},
                {"q": "what is rag?", "a": "retrieval."},
                {"q": "What is RAG?", "a": "Something else."},
                {"q": "", "a": "No question."},
            ]
        },
    )
    out = tmp_path / "out" / "kb_qa.json"

    blocks = build_qa_kb([source], out, now=lambda: FIXED)

    payload = json.loads(out.read_text(encoding="utf-8"))
    assert payload["version"] == 1
    assert payload["createdAt"] == "2024-03-01T09:30:00.250Z"
    assert len(blocks) == len(payload["blocks"]) == 2
    assert payload["blocks"][0]["tags"] == ["rag", "search"]
    assert "Tags: rag, search" in payload["blocks"][0]["text"]
    assert payload["blocks"][0]["source"] == "faq"
    assert payload["blocks"][0]["meta"]["topic"] == "faq"


def test_replace_into_built_index_keeps_documents(corpus_dir, kb_path, embeddings, qa_files):
    """Replace against a built index swaps the QA blocks and keeps document chunks."""
    write_doc(corpus_dir, "guide.txt", [paragraph("guide") for _ in range(2)])
    build_kb(corpus_dir, kb_path, embeddings, embed_model="test-embed", show_progress=False)
    merge_qa_into_kb(kb_path, [qa_files[0]], embeddings_client=embeddings, now=lambda: FIXED)

    merge_qa_into_kb(kb_path, [qa_files[1]], mode=MergeMode.REPLACE, embeddings_client=embeddings)

    kb = load_kb(kb_path)
    docs = [chunk.doc for chunk in kb.chunks]
    assert docs == ["guide.txt", "faq_b", "faq_b"]
    assert [chunk.chunk_index for chunk in kb.chunks if chunk.doc == "faq_b"] == [0, 1]
    assert kb.manifest.chunk_count == 3
    assert not is_stale(kb, corpus_dir)
