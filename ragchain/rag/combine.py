from __future__ import annotations

"""Document combination strategies: stuff and map-reduce."""

from dataclasses import dataclass
from enum import Enum
import asyncio
import logging
from typing import Protocol, Sequence

from ragchain.rag.errors import ContextTooLargeError, MissingInputKeyError, UnknownChainTypeError
from ragchain.rag.llm import Generator, LLMChain
from ragchain.rag.prompts import MAP_PROMPT, REDUCE_PROMPT, STUFF_PROMPT, PromptTemplate
from ragchain.rag.types import ChainValues, Document

logger = logging.getLogger(__name__)

DOCUMENTS_KEY = "input_documents"
QUESTION_KEY = "question"
CHAT_HISTORY_KEY = "chat_history"


class ChainType(str, Enum):
    STUFF = "stuff_documents_chain"
    MAP_REDUCE = "map_reduce_documents_chain"

    @classmethod
    def parse(cls, value: ChainType | str) -> ChainType:
        """Resolve a selector, failing on unknown values."""
        if isinstance(value, cls):
            return value
        for member in cls:
            if value == member.value:
                return member
        raise UnknownChainTypeError(value, [member.value for member in cls])


class DocumentCombiner(Protocol):
    """Turns a question and documents into a single answer."""
    output_key: str

    @property
    def input_keys(self) -> list[str]:
        ...

    async def combine(
        self, question: str, documents: Sequence[Document], chat_history: str = ""
    ) -> str:
        ...

    async def call(self, values: ChainValues) -> ChainValues:
        ...


def _require(values: ChainValues, keys: list[str]) -> None:
    missing = [key for key in keys if key not in values]
    if missing:
        raise MissingInputKeyError(missing)


def _truncate(text: str, limit: int) -> str:
    """Trim text to the character limit without cutting words."""
    if len(text) <= limit:
        return text
    trimmed = text[:limit]
    if not text[limit].isspace():
        cut = max(trimmed.rfind(" "), trimmed.rfind("\n"))
        if cut > 0:
            trimmed = trimmed[:cut]
    return trimmed.rstrip()


@dataclass(frozen=True)
class StuffDocumentsChain:
    """Concatenate all documents into one prompt and generate once."""
    llm_chain: LLMChain
    document_separator: str = "\n\n"
    max_context_chars: int | None = None
    truncate: bool = False

    def __post_init__(self) -> None:
        self.llm_chain.prompt.check_variables(
            {"context", QUESTION_KEY, CHAT_HISTORY_KEY}, {"context"}, "Stuff prompt"
        )

    @property
    def output_key(self) -> str:
        return self.llm_chain.output_key

    @property
    def input_keys(self) -> list[str]:
        return [QUESTION_KEY, DOCUMENTS_KEY]

    def build_context(self, documents: Sequence[Document]) -> str:
        """Join document contents, enforcing the context budget."""
        context = self.document_separator.join(doc.content for doc in documents)
        limit = self.max_context_chars
        if limit is None or len(context) <= limit:
            return context
        if not self.truncate:
            raise ContextTooLargeError(len(context), limit)
        logger.warning(
            "context_truncated",
            extra={"context_chars": len(context), "limit": limit},
        )
        return _truncate(context, limit)

    async def combine(
        self, question: str, documents: Sequence[Document], chat_history: str = ""
    ) -> str:
        context = self.build_context(documents)
        return await self.llm_chain.predict(
            context=context,
            question=question,
            chat_history=chat_history,
        )

    async def call(self, values: ChainValues) -> ChainValues:
        _require(values, self.input_keys)
        text = await self.combine(
            values[QUESTION_KEY],
            values[DOCUMENTS_KEY],
            values.get(CHAT_HISTORY_KEY, ""),
        )
        return {self.output_key: text}


@dataclass(frozen=True)
class MapReduceDocumentsChain:
    """Extract from each document concurrently, then reduce the extracts.

    The map phase issues one generation call per document; calls run
    concurrently and their outputs are joined in the original document order.
    The reduce phase issues a single call over the joined extracts, so a run
    over N documents costs N + 1 generation calls. A failing map call cancels
    the remaining ones and its error propagates unchanged.
    """
    map_chain: LLMChain
    reduce_chain: LLMChain
    summary_separator: str = "\n\n"
    max_concurrency: int | None = None

    def __post_init__(self) -> None:
        self.map_chain.prompt.check_variables(
            {"context", QUESTION_KEY, CHAT_HISTORY_KEY}, {"context"}, "Map prompt"
        )
        self.reduce_chain.prompt.check_variables(
            {"summaries", QUESTION_KEY, CHAT_HISTORY_KEY}, {"summaries"}, "Reduce prompt"
        )

    @property
    def output_key(self) -> str:
        return self.reduce_chain.output_key

    @property
    def input_keys(self) -> list[str]:
        return [QUESTION_KEY, DOCUMENTS_KEY]

    async def map(
        self, question: str, documents: Sequence[Document], chat_history: str = ""
    ) -> list[str]:
        """Run the map prompt over every document, preserving order."""
        if not documents:
            return []
        semaphore = asyncio.Semaphore(self.max_concurrency) if self.max_concurrency else None

        async def _extract(document: Document) -> str:
            if semaphore is None:
                return await self.map_chain.predict(
                    context=document.content,
                    question=question,
                    chat_history=chat_history,
                )
            async with semaphore:
                return await self.map_chain.predict(
                    context=document.content,
                    question=question,
                    chat_history=chat_history,
                )

        try:
            async with asyncio.TaskGroup() as group:
                tasks = [group.create_task(_extract(document)) for document in documents]
        except ExceptionGroup as errors:
            raise errors.exceptions[0]
        return [task.result() for task in tasks]

    async def combine(
        self, question: str, documents: Sequence[Document], chat_history: str = ""
    ) -> str:
        summaries = await self.map(question, documents, chat_history)
        logger.info(
            "map_phase_complete",
            extra={"documents": len(documents)},
        )
        return await self.reduce_chain.predict(
            summaries=self.summary_separator.join(summaries),
            question=question,
            chat_history=chat_history,
        )

    async def call(self, values: ChainValues) -> ChainValues:
        _require(values, self.input_keys)
        text = await self.combine(
            values[QUESTION_KEY],
            values[DOCUMENTS_KEY],
            values.get(CHAT_HISTORY_KEY, ""),
        )
        return {self.output_key: text}


def load_qa_chain(
    generator: Generator,
    chain_type: ChainType | str = ChainType.STUFF,
    *,
    prompt: PromptTemplate | None = None,
    map_prompt: PromptTemplate | None = None,
    reduce_prompt: PromptTemplate | None = None,
    output_key: str = "text",
    document_separator: str = "\n\n",
    max_context_chars: int | None = None,
    truncate: bool = False,
    max_concurrency: int | None = None,
) -> StuffDocumentsChain | MapReduceDocumentsChain:
    """Factory for document combiners based on chain type."""
    resolved = ChainType.parse(chain_type)
    if resolved is ChainType.STUFF:
        return StuffDocumentsChain(
            llm_chain=LLMChain(prompt=prompt or STUFF_PROMPT, generator=generator, output_key=output_key),
            document_separator=document_separator,
            max_context_chars=max_context_chars,
            truncate=truncate,
        )
    return MapReduceDocumentsChain(
        map_chain=LLMChain(prompt=map_prompt or MAP_PROMPT, generator=generator),
        reduce_chain=LLMChain(
            prompt=reduce_prompt or REDUCE_PROMPT, generator=generator, output_key=output_key
        ),
        summary_separator=document_separator,
        max_concurrency=max_concurrency,
    )
