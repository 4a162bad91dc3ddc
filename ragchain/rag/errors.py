from __future__ import annotations

"""Error taxonomy shared by chains and their collaborators."""

from typing import Iterable


class ChainError(RuntimeError):
    """Base class for chain failures."""
    pass


class MissingInputKeyError(ChainError, KeyError):
    """Raised when a required input value is absent."""

    def __init__(self, keys: str | Iterable[str]) -> None:
        self.keys = [keys] if isinstance(keys, str) else list(keys)
        names = ", ".join(self.keys)
        super().__init__(f"Missing input key(s): {names}")

    def __str__(self) -> str:
        return self.args[0]


class UnknownChainTypeError(ChainError, ValueError):
    """Raised when a combination strategy selector is not recognised."""

    def __init__(self, chain_type: object, valid: Iterable[str]) -> None:
        self.chain_type = chain_type
        options = ", ".join(valid)
        super().__init__(
            f"Unknown chain type {chain_type!r}. "
            f"Chain type should be one of the following: {options}."
        )


class AmbiguousRewriteOutputError(ChainError):
    """Raised when the question generator returns other than a single output."""
    pass


class RetrievalError(ChainError):
    """Raised when a retriever request fails or returns an invalid payload."""
    pass


class GenerationError(ChainError):
    """Raised when LLM requests fail or responses are invalid."""
    pass


class ContextTooLargeError(ChainError):
    """Raised when stuffed context exceeds the configured character budget."""

    def __init__(self, size: int, limit: int) -> None:
        self.size = size
        self.limit = limit
        super().__init__(f"Context of {size} characters exceeds limit of {limit}")
