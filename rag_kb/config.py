"""Runtime settings read from environment variables."""

from __future__ import annotations

import os
from typing import Mapping, Optional

from pydantic import BaseModel

from .utils import clamp_int


class Settings(BaseModel):
    """Knowledge base and model configuration."""
    docs_dir: str = "docs"
    kb_path: str = "kb.json"

    target_chunks: int = 150
    top_k: int = 10
    per_doc_cap: int = 3
    embed_batch_size: int = 64

    embed_model: str = "mxbai-embed-large"
    chat_model: str = "llama3.1"
    ollama_base_url: str = "http://localhost:11434"
    max_output_tokens: int = 1100

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            docs_dir=env.get("DOCS_DIR", "docs"),
            kb_path=env.get("KB_PATH", "kb.json"),
            target_chunks=clamp_int(env.get("TARGET_CHUNKS"), 150, 30, 800),
            top_k=clamp_int(env.get("TOP_K"), 10, 3, 20),
            per_doc_cap=clamp_int(env.get("PER_DOC_CAP"), 3, 1, 10),
            embed_batch_size=clamp_int(env.get("EMBED_BATCH_SIZE"), 64, 1, 512),
            embed_model=env.get("EMBED_MODEL", "mxbai-embed-large"),
            chat_model=env.get("CHAT_MODEL", "llama3.1"),
            ollama_base_url=env.get("OLLAMA_BASE_URL", "http://localhost:11434"),
            max_output_tokens=clamp_int(env.get("MAX_OUTPUT_TOKENS"), 1100, 64, 8192),
        )
