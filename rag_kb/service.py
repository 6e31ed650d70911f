"""Question answering on top of the knowledge base."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, List, Optional, Protocol

from langchain_community.chat_models import ChatOllama
from langchain_core.embeddings import Embeddings
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from .builder import build_kb
from .config import Settings
from .corpus import list_documents
from .errors import GenerationError, KBError
from .loader import KnowledgeBaseHandle
from .retriever import retrieve
from .schemas import AskResult, BuildResult, RetrievalResult, SourceRef, StatusReport
from .utils import make_snippet


SYSTEM_PROMPT = " ".join(
    [
        "Answer ONLY from the provided CONTEXTS.",
        "If information is missing, say so explicitly and suggest which document to check.",
        "Answer in detail, using sections when it helps.",
        "Always cite with the format [Document | chunk N] at the end of relevant sentences or paragraphs.",
        "Do not make things up.",
    ]
)

FALLBACK_ANSWER = "I could not produce an answer from the available material."


class AnswerGenerator(Protocol):
    def generate(self, question: str, contexts: List[RetrievalResult]) -> str: ...


def format_contexts(contexts: List[RetrievalResult]) -> str:
    """Render selected chunks with their citation labels."""
    return "\n\n".join(f"### [{c.doc} | chunk {c.chunk_index}]\n{c.text}" for c in contexts)


class ChatAnswerGenerator:
    """Answer generator backed by a LangChain chat model."""

    def __init__(self, chat_model: BaseChatModel):
        self._chat_model = chat_model

    def build_messages(self, question: str, contexts: List[RetrievalResult]):
        user = (
            f"CONTEXTS:\n{format_contexts(contexts) or '(empty)'}\n\n"
            f"QUESTION:\n{question}"
        )
        return [SystemMessage(content=SYSTEM_PROMPT), HumanMessage(content=user)]

    def generate(self, question: str, contexts: List[RetrievalResult]) -> str:
        try:
            response = self._chat_model.invoke(self.build_messages(question, contexts))
        except Exception as exc:
            raise GenerationError(f"Answer generation failed: {exc}") from exc
        content = response.content if isinstance(response.content, str) else str(response.content)
        return content.strip() or FALLBACK_ANSWER


def create_chat_model(settings: Settings) -> BaseChatModel:
    """Default chat model (Ollama) with a bounded output length."""
    return ChatOllama(
        model=settings.chat_model,
        base_url=settings.ollama_base_url,
        num_predict=settings.max_output_tokens,
    )


class KnowledgeBaseService:
    """
    Build, inspect and query the knowledge base.

    Failures of the core are reported as `ok=False` results carrying the
    error message; they are not raised to the caller.
    """

    def __init__(
        self,
        settings: Settings,
        embeddings_client: Embeddings,
        generator: AnswerGenerator,
        handle: Optional[KnowledgeBaseHandle] = None,
        now: Optional[Callable[[], datetime]] = None,
        show_progress: bool = False,
    ):
        self.settings = settings
        self._embeddings = embeddings_client
        self._generator = generator
        self._now = now
        self._show_progress = show_progress
        self.handle = handle or KnowledgeBaseHandle(
            settings.kb_path, settings.docs_dir, build=self._build
        )

    def _build(self):
        return build_kb(
            corpus_dir=self.settings.docs_dir,
            kb_path=self.settings.kb_path,
            embeddings_client=self._embeddings,
            embed_model=self.settings.embed_model,
            chat_model=self.settings.chat_model,
            target_chunks=self.settings.target_chunks,
            batch_size=self.settings.embed_batch_size,
            now=self._now,
            show_progress=self._show_progress,
        )

    def build(self) -> BuildResult:
        try:
            kb = self.handle.rebuild()
        except (KBError, OSError, ValueError) as exc:
            return BuildResult(ok=False, error=str(exc))
        return BuildResult(ok=True, meta=kb.manifest if kb else None)

    def status(self) -> StatusReport:
        docs = [doc.name for doc in list_documents(self.settings.docs_dir)]
        kb = self.handle.load()
        return StatusReport(docs=docs, has_kb=kb is not None, meta=kb.manifest if kb else None)

    def ask(self, message: str) -> AskResult:
        question = (message or "").strip()
        if not question:
            return AskResult(ok=False, error="message is required")

        try:
            kb = self.handle.get()
            if kb is None:
                return AskResult(ok=False, error="knowledge base is not available")
            contexts = retrieve(
                kb,
                question,
                self._embeddings,
                top_k=self.settings.top_k,
                per_doc_cap=self.settings.per_doc_cap,
            )
            answer = self._generator.generate(question, contexts)
        except (KBError, OSError, ValueError) as exc:
            return AskResult(ok=False, error=str(exc))

        sources = [
            SourceRef(
                doc=c.doc,
                chunk_index=c.chunk_index,
                score=round(c.score, 4),
                snippet=make_snippet(c.text),
            )
            for c in contexts
        ]
        return AskResult(ok=True, answer=answer, sources=sources, meta=kb.manifest)
