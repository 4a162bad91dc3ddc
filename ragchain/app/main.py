from __future__ import annotations

"""FastAPI application exposing the retrieval QA chains."""

import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request

from ragchain.app.dependencies import get_conversational_chain, get_qa_chain, get_retriever
from ragchain.app.metrics import metrics_middleware, metrics_response, record_chain_failure
from ragchain.app.schemas import (
    ChatRequest,
    ChatResponse,
    IngestRequest,
    IngestResponse,
    QueryRequest,
    QueryResponse,
    SourceDocument,
)
from ragchain.app.settings import settings
from ragchain.rag.errors import (
    ChainError,
    ContextTooLargeError,
    GenerationError,
    MissingInputKeyError,
    RetrievalError,
)
from ragchain.rag.chains import ConversationalRetrievalQAChain, RetrievalQAChain
from ragchain.rag.retriever import InMemoryRetriever, Retriever
from ragchain.rag.types import Document

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the configured chains once so bad settings fail at startup."""
    get_qa_chain()
    get_conversational_chain()
    logger.info("chains_ready", extra={"chain_type": settings.chain_type})
    yield


app = FastAPI(title="Retrieval QA Chains", version="0.1.0", lifespan=lifespan)


def _configure_logging() -> None:
    """Configure root logging using environment settings."""
    level_name = settings.log_level.strip().upper()
    level = getattr(logging, level_name, logging.INFO)
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )
    logger.setLevel(level)


_configure_logging()


def _status_for(exc: ChainError) -> int:
    """Map chain errors to HTTP status codes."""
    if isinstance(exc, MissingInputKeyError):
        return 422
    if isinstance(exc, ContextTooLargeError):
        return 413
    if isinstance(exc, (GenerationError, RetrievalError)):
        return 502
    return 500


def _chain_failure(route: str, request_id: str, exc: ChainError) -> HTTPException:
    """Log a failed chain call and build the matching HTTP error."""
    record_chain_failure(route, exc)
    logger.error(
        "chain_call_failed",
        extra={"route": route, "request_id": request_id, "detail": type(exc).__name__},
    )
    return HTTPException(status_code=_status_for(exc), detail=str(exc))


def _serialize_sources(documents: list[Document] | None) -> list[SourceDocument] | None:
    if documents is None:
        return None
    return [SourceDocument(content=doc.content, metadata=doc.metadata) for doc in documents]


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Attach or create a request ID for traceability."""
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.middleware("http")
async def record_metrics(request: Request, call_next):
    """Capture request metrics before returning the response."""
    return await metrics_middleware(request, call_next)


@app.get("/metrics")
async def metrics():
    """Expose Prometheus-style metrics."""
    return metrics_response()


@app.get("/health")
async def health() -> dict[str, str]:
    """Simple health check for uptime monitoring."""
    return {"status": "ok"}


@app.post("/ingest", response_model=IngestResponse)
async def ingest(
    request: IngestRequest,
    retriever: Retriever = Depends(get_retriever),
) -> IngestResponse:
    """Add documents to the in-memory retriever."""
    if not isinstance(retriever, InMemoryRetriever):
        raise HTTPException(status_code=400, detail="Ingestion requires the memory retriever")
    ingested = retriever.add_documents(
        Document(content=item.content, metadata=item.metadata) for item in request.documents
    )
    logger.info("ingest_complete", extra={"ingested": ingested})
    return IngestResponse(ingested=ingested)


@app.post("/query", response_model=QueryResponse)
async def query(
    request: QueryRequest,
    http_request: Request,
    chain: RetrievalQAChain = Depends(get_qa_chain),
) -> QueryResponse:
    """Answer a single question from retrieved documents."""
    request_id = request.trace_id or getattr(http_request.state, "request_id", str(uuid.uuid4()))
    try:
        result = await chain.run(request.query)
    except ChainError as exc:
        raise _chain_failure("query", request_id, exc) from exc
    logger.info(
        "query_answered",
        extra={"request_id": request_id, "answer_chars": len(result.answer)},
    )
    return QueryResponse(
        answer=result.answer,
        sources=_serialize_sources(result.source_documents),
        request_id=request_id,
    )


@app.post("/chat", response_model=ChatResponse)
async def chat(
    request: ChatRequest,
    http_request: Request,
    chain: ConversationalRetrievalQAChain = Depends(get_conversational_chain),
) -> ChatResponse:
    """Answer a follow-up question in the context of prior turns."""
    request_id = request.trace_id or getattr(http_request.state, "request_id", str(uuid.uuid4()))
    messages = request.chat_history
    if settings.chat_history_turns > 0:
        messages = messages[-settings.chat_history_turns:]
    history = [{"role": msg.role, "content": msg.content} for msg in messages]
    try:
        result = await chain.run(request.question, history)
    except ChainError as exc:
        raise _chain_failure("chat", request_id, exc) from exc
    logger.info(
        "chat_answered",
        extra={
            "request_id": request_id,
            "history_turns": len(history),
            "rewritten": result.question != request.question,
        },
    )
    return ChatResponse(
        answer=result.answer,
        question=result.question,
        sources=_serialize_sources(result.source_documents),
        request_id=request_id,
    )
