"""LLM access: the completion client, chunking, prompts, and the summarizer."""

from study_summarizer.llm.chunking import chunk_text, estimate_tokens
from study_summarizer.llm.client import ChatMessage, CompletionClient, ProviderError
from study_summarizer.llm.prompts import DetailLevel
from study_summarizer.llm.quiz import QuizParseError, QuizQuestion, QuizQuestionType
from study_summarizer.llm.summarizer import (
    EmptyTextError,
    PageText,
    Summarizer,
    SummaryResult,
)

__all__ = [
    "ChatMessage",
    "CompletionClient",
    "DetailLevel",
    "EmptyTextError",
    "PageText",
    "ProviderError",
    "QuizParseError",
    "QuizQuestion",
    "QuizQuestionType",
    "Summarizer",
    "SummaryResult",
    "chunk_text",
    "estimate_tokens",
]
