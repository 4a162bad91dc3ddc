from __future__ import annotations

"""Prompt templates for answering, map-reduce and question condensing."""

from dataclasses import dataclass
from string import Formatter
from typing import Any

from ragchain.rag.errors import MissingInputKeyError


@dataclass(frozen=True)
class PromptTemplate:
    """Text template with named ``{variable}`` placeholders."""
    template: str
    input_variables: tuple[str, ...]

    @classmethod
    def from_template(cls, template: str) -> PromptTemplate:
        """Build a template, deriving variables from its placeholders."""
        names: list[str] = []
        for _, field_name, _, _ in Formatter().parse(template):
            if field_name and field_name not in names:
                names.append(field_name)
        return cls(template=template, input_variables=tuple(names))

    def check_variables(
        self, allowed: set[str], required: set[str], label: str
    ) -> None:
        """Reject placeholders outside ``allowed`` or missing from ``required``."""
        unknown = [name for name in self.input_variables if name not in allowed]
        if unknown:
            raise ValueError(f"{label} uses unsupported variables: {', '.join(unknown)}")
        absent = sorted(required.difference(self.input_variables))
        if absent:
            raise ValueError(f"{label} must use variables: {', '.join(absent)}")

    def format(self, **values: Any) -> str:
        """Fill the template; extra values are ignored."""
        missing = [name for name in self.input_variables if name not in values]
        if missing:
            raise MissingInputKeyError(missing)
        return self.template.format(**{name: values[name] for name in self.input_variables})


STUFF_PROMPT = PromptTemplate.from_template(
    "Use the following pieces of context to answer the question at the end. "
    "If you don't know the answer, just say that you don't know, "
    "don't try to make up an answer.\n\n"
    "{context}\n\n"
    "Question: {question}\n"
    "Helpful Answer:"
)

MAP_PROMPT = PromptTemplate.from_template(
    "Use the following portion of a long document to see if any of the text is "
    "relevant to answer the question.\n"
    "Return any relevant text verbatim.\n"
    "{context}\n"
    "Question: {question}\n"
    "Relevant text, if any:"
)

REDUCE_PROMPT = PromptTemplate.from_template(
    "Given the following extracted parts of a long document and a question, "
    "create a final answer.\n"
    "If you don't know the answer, just say that you don't know. "
    "Don't try to make up an answer.\n\n"
    "QUESTION: {question}\n"
    "=========\n"
    "{summaries}\n"
    "=========\n"
    "FINAL ANSWER:"
)

CONDENSE_QUESTION_PROMPT = PromptTemplate.from_template(
    "Given the following conversation and a follow up question, "
    "rephrase the follow up question to be a standalone question.\n\n"
    "Chat History:\n"
    "{chat_history}\n"
    "Follow Up Input: {question}\n"
    "Standalone question:"
)
