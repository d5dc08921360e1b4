"""Splitting oversized inputs into chunks that fit the token budget.

Token counts are estimated as ``ceil(len(text) / 4)``. This is not a tokenizer
and it undercounts for non-Latin scripts and code, so budgets are kept
conservative. Splitting happens on paragraph boundaries first, then sentence
boundaries, then whitespace. Only whitespace is ever dropped at a split point.
"""

from __future__ import annotations

import math
import re

CHARS_PER_TOKEN = 4
DEFAULT_MAX_TOKENS = 3000

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")


def estimate_tokens(text: str) -> int:
    """Coarse token estimate: characters / 4, rounded up."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def chunk_text(text: str, max_tokens: int = DEFAULT_MAX_TOKENS) -> list[str]:
    """Split *text* into chunks of at most ``max_tokens`` estimated tokens.

    A chunk can only exceed the budget when it is a single run of
    non-whitespace characters longer than the budget.

    Args:
        text: The input text.
        max_tokens: Token budget per chunk.

    Returns:
        Chunks in original order. Input within budget comes back as one
        stripped chunk.
    """
    if max_tokens <= 0:
        raise ValueError(f"max_tokens must be positive, got: {max_tokens}")

    if estimate_tokens(text) <= max_tokens:
        return [text.strip()]

    budget = max_tokens * CHARS_PER_TOKEN
    paragraphs = [p.strip() for p in _PARAGRAPH_BREAK.split(text)]
    chunks: list[str] = []
    current = ""

    for paragraph in paragraphs:
        if not paragraph:
            continue
        if len(paragraph) > budget:
            if current:
                chunks.append(current)
                current = ""
            chunks.extend(_split_paragraph(paragraph, budget))
        elif current and len(current) + 2 + len(paragraph) > budget:
            chunks.append(current)
            current = paragraph
        else:
            current = f"{current}\n\n{paragraph}" if current else paragraph

    if current:
        chunks.append(current)
    return chunks


def _split_paragraph(paragraph: str, budget: int) -> list[str]:
    """Split an oversized paragraph at sentence boundaries."""
    pieces: list[str] = []
    for sentence in _SENTENCE_BREAK.split(paragraph):
        if len(sentence) > budget:
            pieces.extend(_split_words(sentence, budget))
        else:
            pieces.append(sentence)
    return _pack(pieces, budget)


def _split_words(sentence: str, budget: int) -> list[str]:
    """Last resort: split an oversized sentence at whitespace."""
    return _pack(sentence.split(), budget)


def _pack(pieces: list[str], budget: int) -> list[str]:
    """Greedily join *pieces* with single spaces up to *budget* characters."""
    packed: list[str] = []
    current = ""
    for piece in pieces:
        if not piece:
            continue
        if current and len(current) + 1 + len(piece) > budget:
            packed.append(current)
            current = piece
        else:
            current = f"{current} {piece}" if current else piece
    if current:
        packed.append(current)
    return packed
