from __future__ import annotations

"""Condense a follow-up question and chat history into a standalone question."""

from dataclasses import dataclass
import logging
from typing import Any, Protocol

from ragchain.rag.errors import AmbiguousRewriteOutputError
from ragchain.rag.llm import Generator, LLMChain
from ragchain.rag.prompts import CONDENSE_QUESTION_PROMPT, PromptTemplate
from ragchain.rag.types import ChainValues, ChatHistory, format_chat_history

logger = logging.getLogger(__name__)


class QuestionGenerator(Protocol):
    """Anything that maps question and history values to named outputs."""

    async def call(self, values: ChainValues) -> ChainValues:
        ...


@dataclass(frozen=True)
class QuestionRewriter:
    """Rewrites follow-up questions using a question generator chain."""
    question_generator: QuestionGenerator

    async def rewrite(self, question: str, chat_history: ChatHistory | None) -> str:
        """Return a standalone question, or ``question`` when there is no history."""
        history = format_chat_history(chat_history)
        if not history:
            return question
        result = await self.question_generator.call(
            {"question": question, "chat_history": history}
        )
        rewritten = _single_output(result)
        if not isinstance(rewritten, str):
            raise AmbiguousRewriteOutputError(
                f"Question generator must return text, got {type(rewritten).__name__}"
            )
        if not rewritten.strip():
            return question
        rewritten = rewritten.strip()
        logger.info(
            "question_rewritten",
            extra={
                "history_chars": len(history),
                "changed": rewritten != question,
            },
        )
        return rewritten


def _single_output(result: ChainValues) -> Any:
    if len(result) != 1:
        raise AmbiguousRewriteOutputError(
            "Question generator must return exactly one value, "
            f"got {len(result)}: {', '.join(result)}"
        )
    return next(iter(result.values()))


def build_rewriter(generator: Generator, template: str | None = None) -> QuestionRewriter:
    """Factory for a rewriter bound to a generator and optional template."""
    prompt = PromptTemplate.from_template(template) if template else CONDENSE_QUESTION_PROMPT
    prompt.check_variables(
        {"question", "chat_history"}, {"question", "chat_history"}, "Condense prompt"
    )
    return QuestionRewriter(question_generator=LLMChain(prompt=prompt, generator=generator))
