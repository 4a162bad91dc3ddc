from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


def _env_optional_int(name: str) -> int | None:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value > 0 else None


@dataclass(frozen=True)
class Settings:
    llm_provider: str = os.getenv("RAG_LLM_PROVIDER", "ollama")
    llm_temperature: float = float(os.getenv("RAG_LLM_TEMPERATURE", "0.1"))
    llm_max_tokens: int = int(os.getenv("RAG_LLM_MAX_TOKENS", "512"))
    llm_timeout: float = float(os.getenv("RAG_LLM_TIMEOUT", "60"))
    ollama_base_url: str = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
    ollama_model: str = os.getenv("OLLAMA_MODEL", "llama3.1")
    openai_api_key: str | None = os.getenv("OPENAI_API_KEY")
    openai_base_url: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    openai_chat_model: str | None = os.getenv("OPENAI_CHAT_MODEL")
    gemini_api_key: str | None = os.getenv("GEMINI_API_KEY")
    gemini_chat_model: str | None = os.getenv("GEMINI_CHAT_MODEL")
    chain_type: str = os.getenv("RAG_CHAIN_TYPE", "stuff_documents_chain")
    return_source_documents: bool = _env_bool("RAG_RETURN_SOURCES", "true")
    max_context_chars: int | None = _env_optional_int("RAG_MAX_CONTEXT_CHARS")
    truncate_context: bool = _env_bool("RAG_TRUNCATE_CONTEXT", "false")
    map_concurrency: int | None = _env_optional_int("RAG_MAP_CONCURRENCY")
    qa_template: str | None = os.getenv("RAG_QA_TEMPLATE") or None
    condense_template: str | None = os.getenv("RAG_CONDENSE_TEMPLATE") or None
    retriever_backend: str = os.getenv("RAG_RETRIEVER", "memory")
    retriever_url: str | None = os.getenv("RAG_RETRIEVER_URL")
    retriever_timeout: float = float(os.getenv("RAG_RETRIEVER_TIMEOUT", "15"))
    top_k: int = int(os.getenv("RAG_TOP_K", "4"))
    chat_history_turns: int = int(os.getenv("RAG_CHAT_HISTORY_TURNS", "6"))
    metrics_enabled: bool = _env_bool("RAG_METRICS_ENABLED", "true")
    log_level: str = os.getenv("RAG_LOG_LEVEL", "INFO")

    @property
    def combine_options(self) -> dict[str, object]:
        options: dict[str, object] = {}
        if self.chain_type == "map_reduce_documents_chain":
            options["max_concurrency"] = self.map_concurrency
        else:
            options["max_context_chars"] = self.max_context_chars
            options["truncate"] = self.truncate_context
        return options


settings = Settings()
