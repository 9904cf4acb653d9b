"""Recursive text chunking.

Splits on the coarsest separator that yields pieces within the size limit
(paragraphs, then lines, sentence and clause punctuation, words and finally
single characters) and re-includes up to ``chunk_overlap`` units of the
previous piece at the start of the next one.
"""

from collections.abc import Callable
from dataclasses import dataclass
from functools import lru_cache

import tiktoken
from langchain_text_splitters import RecursiveCharacterTextSplitter

from shared.models.profile import DEFAULT_SEPARATORS


TOKEN_ENCODING = "o200k_base"


@dataclass(frozen=True)
class Chunk:
    content: str
    index: int


@lru_cache(maxsize=1)
def _get_encoding() -> tiktoken.Encoding:
    return tiktoken.get_encoding(TOKEN_ENCODING)


def count_tokens(text: str) -> int:
    """Count tokens with the tokenizer of current OpenAI chat models."""
    if not text:
        return 0
    return len(_get_encoding().encode(text, disallowed_special=()))


def get_length_function(unit: str) -> Callable[[str], int]:
    """Return the length function for a sizing unit ("characters" or "tokens")."""
    if unit == "characters":
        return len
    if unit == "tokens":
        return count_tokens
    raise ValueError(f"Unknown chunk size unit '{unit}'")


def chunk_text(
    text: str,
    chunk_size: int = 500,
    chunk_overlap: int = 50,
    separators: list[str] | None = None,
    length_function: Callable[[str], int] = len,
) -> list[Chunk]:
    """Split ``text`` into ordered chunks of at most ``chunk_size`` units.

    Pieces are trimmed and empty ones dropped before indexing, so indexes are
    contiguous from 0. The same input always produces the same output.

    Raises:
        ValueError: If chunk_size is not positive or chunk_overlap is not smaller than chunk_size.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if chunk_overlap < 0 or chunk_overlap >= chunk_size:
        raise ValueError(f"chunk_overlap ({chunk_overlap}) must be between 0 and chunk_size ({chunk_size})")
    if not text or not text.strip():
        return []

    splitter = RecursiveCharacterTextSplitter(
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
        separators=separators if separators is not None else DEFAULT_SEPARATORS,
        length_function=length_function,
        keep_separator=True,
        strip_whitespace=True,
    )
    pieces = [piece.strip() for piece in splitter.split_text(text)]
    return [Chunk(content=piece, index=index) for index, piece in enumerate(p for p in pieces if p)]


def add_contextual_prefix(chunks: list[Chunk], title: str, summary: str | None = None) -> list[str]:
    """Return the texts to embed, each prefixed with the document title (and summary)."""
    header = f"Document: {title}"
    if summary:
        header += f"\nSummary: {summary}"
    return [f"{header}\n\n{chunk.content}" for chunk in chunks]
