from __future__ import annotations

"""Retriever capability and the bundled retriever backends."""

from dataclasses import dataclass, field
import logging
import re
from typing import Any, Iterable, Protocol

import httpx

from ragchain.rag.errors import RetrievalError
from ragchain.rag.types import Document

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9]+")


class Retriever(Protocol):
    """Capability that maps a query to ranked relevant documents."""

    async def get_relevant_documents(self, query: str) -> list[Document]:
        ...


def _tokenize(text: str) -> set[str]:
    return set(_TOKEN_RE.findall(text.lower()))


@dataclass
class InMemoryRetriever:
    """Lexical-overlap retriever for local testing and small datasets."""
    documents: list[Document] = field(default_factory=list)
    top_k: int = 4

    def add_documents(self, documents: Iterable[Document]) -> int:
        """Store documents for later retrieval."""
        added = 0
        for document in documents:
            self.documents.append(document)
            added += 1
        return added

    async def get_relevant_documents(self, query: str) -> list[Document]:
        """Return stored documents ranked by shared query terms."""
        query_tokens = _tokenize(query)
        if not query_tokens or not self.documents:
            return []
        scored: list[tuple[int, int, Document]] = []
        for idx, document in enumerate(self.documents):
            overlap = len(query_tokens & _tokenize(document.content))
            if overlap:
                scored.append((overlap, idx, document))
        scored.sort(key=lambda item: (-item[0], item[1]))
        return [document for _, _, document in scored[: self.top_k]]

    def stats(self) -> dict[str, int | str]:
        """Return basic stats for the retriever."""
        return {
            "backend": "memory",
            "document_count": len(self.documents),
        }


@dataclass(frozen=True)
class HTTPRetriever:
    """Retriever backed by an external search service."""
    url: str
    top_k: int = 4
    timeout: float = 15.0
    headers: dict[str, str] = field(default_factory=dict)
    client: httpx.AsyncClient | None = field(default=None, compare=False, repr=False)

    async def get_relevant_documents(self, query: str) -> list[Document]:
        """POST the query to the search service and parse its documents."""
        owns_client = self.client is None
        client = httpx.AsyncClient(timeout=self.timeout) if owns_client else self.client
        try:
            response = await client.post(
                self.url,
                json={"query": query, "top_k": self.top_k},
                headers=self.headers,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            raise RetrievalError(str(exc)) from exc
        except ValueError as exc:
            raise RetrievalError("Retriever response is not valid JSON") from exc
        finally:
            if owns_client:
                await client.aclose()
        documents = _parse_documents(data)
        logger.info(
            "retriever_response",
            extra={"url": self.url, "documents": len(documents)},
        )
        return documents


def _parse_documents(data: Any) -> list[Document]:
    """Convert a search service payload into documents."""
    if isinstance(data, dict):
        data = data.get("documents")
    if not isinstance(data, list):
        raise RetrievalError("Invalid retriever response")
    documents: list[Document] = []
    for item in data:
        if not isinstance(item, dict):
            raise RetrievalError("Invalid retriever document")
        content = item.get("content", item.get("page_content"))
        if not isinstance(content, str):
            raise RetrievalError("Invalid retriever document content")
        metadata = item.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise RetrievalError("Invalid retriever document metadata")
        documents.append(Document(content=content, metadata=dict(metadata)))
    return documents
