from __future__ import annotations

"""Core data types for documents, chain envelopes and chat history."""

from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence, Union

ChainValues = dict[str, Any]
ChatHistory = Union[str, Sequence[tuple[str, str]], Sequence[Mapping[str, str]]]

_ROLE_LABELS = {"user": "Human", "human": "Human", "assistant": "Assistant", "ai": "Assistant"}


@dataclass(frozen=True)
class Document:
    """Retrieved text unit with metadata."""
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class QAResult:
    """Answer produced by a QA chain run."""
    answer: str
    question: str
    source_documents: list[Document] | None = None


def format_chat_history(history: ChatHistory | None) -> str:
    """Flatten chat history into a transcript suitable for prompts."""
    if not history:
        return ""
    if isinstance(history, str):
        return history.strip()
    lines: list[str] = []
    for item in history:
        if isinstance(item, Mapping):
            role = str(item.get("role", "user")).strip().lower()
            content = str(item.get("content", "")).strip()
            if not content:
                continue
            label = _ROLE_LABELS.get(role, role.capitalize() or "Human")
            lines.append(f"{label}: {content}")
            continue
        human, ai = item
        if human:
            lines.append(f"Human: {human}")
        if ai:
            lines.append(f"Assistant: {ai}")
    return "\n".join(lines)
