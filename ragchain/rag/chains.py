from __future__ import annotations

"""Retrieval QA chains for single-turn and conversational questions."""

from dataclasses import dataclass
import logging
from typing import Any, Mapping

from ragchain.rag.combine import ChainType, DocumentCombiner, load_qa_chain
from ragchain.rag.errors import MissingInputKeyError
from ragchain.rag.llm import Generator
from ragchain.rag.prompts import PromptTemplate
from ragchain.rag.retriever import Retriever
from ragchain.rag.rewriter import QuestionRewriter, build_rewriter
from ragchain.rag.types import ChainValues, ChatHistory, Document, QAResult, format_chat_history

logger = logging.getLogger(__name__)

SOURCE_DOCUMENTS_KEY = "sourceDocuments"


def _require(inputs: Mapping[str, Any], keys: list[str]) -> None:
    missing = [key for key in keys if key not in inputs]
    if missing:
        raise MissingInputKeyError(missing)


def _build_combiner(
    generator: Generator,
    chain_type: ChainType | str,
    qa_template: str | None,
    combine_options: Mapping[str, Any] | None,
) -> DocumentCombiner:
    resolved = ChainType.parse(chain_type)
    qa_prompt = PromptTemplate.from_template(qa_template) if qa_template else None
    options = dict(combine_options or {})
    if resolved is ChainType.STUFF:
        return load_qa_chain(generator, resolved, prompt=qa_prompt, **options)
    return load_qa_chain(generator, resolved, map_prompt=qa_prompt, **options)


async def _retrieve(retriever: Retriever, question: str) -> list[Document]:
    documents = list(await retriever.get_relevant_documents(question))
    logger.info(
        "retrieval_complete",
        extra={
            "results": len(documents),
            "query_length": len(question),
        },
    )
    return documents


def _envelope(chain: Any, result: QAResult) -> ChainValues:
    output: ChainValues = {chain.output_key: result.answer}
    if chain.return_source_documents:
        output[SOURCE_DOCUMENTS_KEY] = result.source_documents
    return output


@dataclass(frozen=True)
class RetrievalQAChain:
    """Answer a single question from retrieved documents."""
    retriever: Retriever
    combine_documents_chain: DocumentCombiner
    input_key: str = "query"
    output_key: str = "result"
    return_source_documents: bool = False

    @property
    def input_keys(self) -> list[str]:
        return [self.input_key]

    @property
    def output_keys(self) -> list[str]:
        keys = [self.output_key]
        if self.return_source_documents:
            keys.append(SOURCE_DOCUMENTS_KEY)
        return keys

    async def run(self, query: str) -> QAResult:
        """Retrieve documents for ``query`` and combine them into an answer."""
        documents = await _retrieve(self.retriever, query)
        answer = await self.combine_documents_chain.combine(query, documents)
        return QAResult(
            answer=answer,
            question=query,
            source_documents=documents if self.return_source_documents else None,
        )

    async def call(self, inputs: Mapping[str, Any]) -> ChainValues:
        """Run the chain from an input mapping keyed by ``input_key``."""
        _require(inputs, self.input_keys)
        result = await self.run(inputs[self.input_key])
        return _envelope(self, result)

    def serialize(self) -> dict[str, Any]:
        raise NotImplementedError("RetrievalQAChain does not support serialization")

    @classmethod
    def deserialize(cls, data: Mapping[str, Any], **values: Any) -> RetrievalQAChain:
        raise NotImplementedError("RetrievalQAChain does not support deserialization")

    @classmethod
    def from_llm(
        cls,
        generator: Generator,
        retriever: Retriever,
        *,
        chain_type: ChainType | str = ChainType.STUFF,
        qa_template: str | None = None,
        combine_options: Mapping[str, Any] | None = None,
        input_key: str = "query",
        output_key: str = "result",
        return_source_documents: bool = False,
    ) -> RetrievalQAChain:
        """Build a chain whose combiner is selected by ``chain_type``."""
        combiner = _build_combiner(generator, chain_type, qa_template, combine_options)
        return cls(
            retriever=retriever,
            combine_documents_chain=combiner,
            input_key=input_key,
            output_key=output_key,
            return_source_documents=return_source_documents,
        )


@dataclass(frozen=True)
class ConversationalRetrievalQAChain:
    """Answer a follow-up question using chat history and retrieved documents.

    Non-empty history is first condensed with the question into a standalone
    question, which is then used for retrieval and answering. Empty history
    skips the rewrite entirely. ``pass_history_to_answer`` controls whether the
    history is also offered to the answer prompt; templates that do not name
    ``{chat_history}`` ignore it either way.
    """
    retriever: Retriever
    combine_documents_chain: DocumentCombiner
    question_rewriter: QuestionRewriter
    input_key: str = "question"
    chat_history_key: str = "chat_history"
    output_key: str = "result"
    return_source_documents: bool = False
    pass_history_to_answer: bool = True

    @property
    def input_keys(self) -> list[str]:
        return [self.input_key, self.chat_history_key]

    @property
    def output_keys(self) -> list[str]:
        keys = [self.output_key]
        if self.return_source_documents:
            keys.append(SOURCE_DOCUMENTS_KEY)
        return keys

    async def run(self, question: str, chat_history: ChatHistory | None = "") -> QAResult:
        """Rewrite, retrieve and answer a question in conversational context."""
        history = format_chat_history(chat_history)
        effective_question = await self.question_rewriter.rewrite(question, history)
        documents = await _retrieve(self.retriever, effective_question)
        answer = await self.combine_documents_chain.combine(
            effective_question,
            documents,
            history if self.pass_history_to_answer else "",
        )
        return QAResult(
            answer=answer,
            question=effective_question,
            source_documents=documents if self.return_source_documents else None,
        )

    async def call(self, inputs: Mapping[str, Any]) -> ChainValues:
        """Run the chain from an input mapping with question and history keys."""
        _require(inputs, self.input_keys)
        result = await self.run(inputs[self.input_key], inputs[self.chat_history_key])
        return _envelope(self, result)

    def serialize(self) -> dict[str, Any]:
        raise NotImplementedError("ConversationalRetrievalQAChain does not support serialization")

    @classmethod
    def deserialize(cls, data: Mapping[str, Any], **values: Any) -> ConversationalRetrievalQAChain:
        raise NotImplementedError("ConversationalRetrievalQAChain does not support deserialization")

    @classmethod
    def from_llm(
        cls,
        generator: Generator,
        retriever: Retriever,
        *,
        chain_type: ChainType | str = ChainType.STUFF,
        question_generator_template: str | None = None,
        qa_template: str | None = None,
        combine_options: Mapping[str, Any] | None = None,
        input_key: str = "question",
        chat_history_key: str = "chat_history",
        output_key: str = "result",
        return_source_documents: bool = False,
        pass_history_to_answer: bool = True,
    ) -> ConversationalRetrievalQAChain:
        """Build a chain with a rewriter and a combiner bound to ``generator``."""
        combiner = _build_combiner(generator, chain_type, qa_template, combine_options)
        return cls(
            retriever=retriever,
            combine_documents_chain=combiner,
            question_rewriter=build_rewriter(generator, question_generator_template),
            input_key=input_key,
            chat_history_key=chat_history_key,
            output_key=output_key,
            return_source_documents=return_source_documents,
            pass_history_to_answer=pass_history_to_answer,
        )
