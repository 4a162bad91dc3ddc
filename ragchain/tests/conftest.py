from __future__ import annotations

"""Shared pytest fixtures and test environment defaults."""

import os
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

os.environ["RAG_RETRIEVER"] = "memory"
os.environ["RAG_CHAIN_TYPE"] = "stuff_documents_chain"
os.environ["RAG_RETURN_SOURCES"] = "true"
os.environ.setdefault("RAG_METRICS_ENABLED", "true")
os.environ.pop("OPENAI_API_KEY", None)
os.environ.pop("RAG_QA_TEMPLATE", None)
os.environ.pop("RAG_CONDENSE_TEMPLATE", None)
os.environ.pop("RAG_MAX_CONTEXT_CHARS", None)

from ragchain.rag.types import Document  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def breyer_documents() -> list[Document]:
    return [
        Document(
            content=(
                "Tonight, I'd like to honor someone who has dedicated his life "
                "to serve this country: Justice Stephen Breyer."
            ),
            metadata={"source": "state_of_the_union.txt", "chunk": 1},
        ),
        Document(
            content=(
                "An Army veteran, Constitutional scholar, and retiring Justice "
                "of the United States Supreme Court."
            ),
            metadata={"source": "state_of_the_union.txt", "chunk": 2},
        ),
        Document(
            content="Justice Breyer, thank you for your service.",
            metadata={"source": "state_of_the_union.txt", "chunk": 3},
        ),
    ]
