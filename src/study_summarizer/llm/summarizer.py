"""Summarizer - key-failover completions, chunked summaries and quizzes.

Every provider call goes through :meth:`Summarizer.complete_with_failover`,
which runs a small state machine per logical request::

    SELECTING -> CALLING -> SUCCESS
        ^           |
        +-----------+  (failure, attempts left)
                    |
                    +-> FAILURE (attempts exhausted)

Each pass through SELECTING consumes one of ``MAX_ATTEMPTS`` slots. Every
failure is reported to the key pool and the next attempt re-selects, so the
failed key sinks to the back of the recency order (or into a disable window)
and a different key is normally tried next.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum

from study_summarizer.keys.pool import KeyPool, NoKeyAvailable
from study_summarizer.llm.chunking import DEFAULT_MAX_TOKENS, chunk_text, estimate_tokens
from study_summarizer.llm.client import ChatMessage, CompletionClient, ProviderError
from study_summarizer.llm.prompts import (
    DetailLevel,
    combine_messages,
    multiple_choice_prompt,
    summary_messages,
    true_false_prompt,
)
from study_summarizer.llm.quiz import QuizParseError, QuizQuestion, parse_quiz_response
from study_summarizer.logging import get_logger
from study_summarizer.security.cipher import DecryptionError

log = get_logger("study_summarizer.llm.summarizer")

MAX_ATTEMPTS = 3
COMBINE_THRESHOLD = 1.5
PARTIAL_JOINER = "\n\n"
PARTIAL_SEPARATOR = "\n\n---\n\n"
DEFAULT_PAGES_PER_GROUP = 4
QUIZ_PARSE_ATTEMPTS = 3

ProgressCallback = Callable[[int, int], None]


class AttemptState(str, Enum):
    """States of one failover-protected completion."""

    SELECTING = "selecting"
    CALLING = "calling"
    SUCCESS = "success"
    FAILURE = "failure"


class EmptyTextError(ProviderError):
    """There is no text to summarise."""

    def __init__(self, message: str = "No text to summarise") -> None:
        super().__init__(message, code="EMPTY_TEXT")


@dataclass
class SummaryResult:
    """Outcome of a chunked summary.

    Attributes:
        text: The final summary.
        chunk_count: How many chunks the input was split into.
        degraded: True when the combination step failed and ``text`` is the
            separator-joined partial summaries.
    """

    text: str
    chunk_count: int
    degraded: bool = False


@dataclass(frozen=True)
class PageText:
    """Extracted text of one document page."""

    page_number: int
    text: str


class Summarizer:
    """Public entry point for summaries and quizzes."""

    def __init__(
        self,
        key_pool: KeyPool,
        client: CompletionClient | None = None,
        *,
        max_attempts: int = MAX_ATTEMPTS,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got: {max_attempts}")
        self._pool = key_pool
        self._client = client or CompletionClient()
        self._max_attempts = max_attempts

    async def close(self) -> None:
        await self._client.close()

    # ------------------------------------------------------------------
    # Failover loop
    # ------------------------------------------------------------------

    async def complete_with_failover(self, messages: Sequence[ChatMessage]) -> str:
        """Run one completion, rotating keys on failure.

        Raises:
            NoKeyAvailable: As soon as selection finds no usable key.
            ProviderError | DecryptionError: The last failure once all
                attempts are used up.
        """
        state = AttemptState.SELECTING
        attempt = 0
        last_error: Exception | None = None
        key_id = ""
        api_key = ""

        while True:
            if state is AttemptState.SELECTING:
                if attempt >= self._max_attempts:
                    state = AttemptState.FAILURE
                    continue
                attempt += 1
                try:
                    selected = await self._pool.select_credential()
                except DecryptionError as e:
                    last_error = e
                    if e.credential_id:
                        await self._report_failure(e.credential_id, rate_limited=False)
                    continue
                if selected is None:
                    raise NoKeyAvailable()
                key_id, api_key = selected.id, selected.key
                state = AttemptState.CALLING

            elif state is AttemptState.CALLING:
                log.debug("completion_attempt", attempt=attempt, key_id=key_id[-6:])
                try:
                    content = await self._client.complete(api_key, messages)
                except ProviderError as e:
                    last_error = e
                    log.warning(
                        "completion_attempt_failed",
                        attempt=attempt,
                        max_attempts=self._max_attempts,
                        key_id=key_id[-6:],
                        status=e.status,
                        code=e.code,
                        credential_error=e.is_credential_error,
                    )
                    await self._report_failure(key_id, rate_limited=e.is_rate_limited)
                    state = AttemptState.SELECTING
                    continue
                state = AttemptState.SUCCESS

            elif state is AttemptState.SUCCESS:
                await self._report_success(key_id)
                return content

            else:
                log.error("completion_attempts_exhausted", attempts=attempt)
                if last_error is not None:
                    raise last_error
                raise ProviderError("Unable to complete the request after several attempts")

    async def _report_success(self, key_id: str) -> None:
        try:
            await self._pool.report_success(key_id)
        except Exception:
            log.exception("api_key_success_report_failed", key_id=key_id[-6:])

    async def _report_failure(self, key_id: str, *, rate_limited: bool) -> None:
        try:
            await self._pool.report_failure(key_id, is_rate_limited=rate_limited)
        except Exception:
            log.exception("api_key_failure_report_failed", key_id=key_id[-6:])

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    async def generate_summary(self, text: str, detail_level: DetailLevel | str) -> str:
        """Summarise *text* in one request, without chunking."""
        return await self.complete_with_failover(summary_messages(text, detail_level))

    async def summarize(
        self,
        text: str,
        detail_level: DetailLevel | str,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        on_progress: ProgressCallback | None = None,
    ) -> SummaryResult:
        """Summarise text of any length.

        Oversized input is split with :func:`chunk_text` and each chunk is
        summarised in order. Short partials are returned joined; otherwise
        one more request merges them, falling back to the joined partials
        (``degraded=True``) if that request fails.

        Args:
            text: Source text.
            detail_level: Summary detail level.
            max_tokens: Token budget per chunk.
            on_progress: Called with ``(current, total)`` before each chunk,
                or once with ``(1, 1)`` when no splitting was needed.

        Raises:
            EmptyTextError: If *text* is blank. Nothing is sent to the provider
                and *on_progress* is not called.
        """
        if not text.strip():
            raise EmptyTextError()

        chunks = chunk_text(text, max_tokens)
        total = len(chunks)
        if total == 1:
            _notify(on_progress, 1, 1)
            return SummaryResult(await self.generate_summary(chunks[0], detail_level), 1)

        log.info("summarizing_in_chunks", chunks=total, max_tokens=max_tokens)
        partials: list[str] = []
        for index, chunk in enumerate(chunks, start=1):
            _notify(on_progress, index, total)
            log.debug("summarizing_chunk", chunk=index, total=total, chars=len(chunk))
            partials.append(await self.generate_summary(chunk, detail_level))

        joined = PARTIAL_JOINER.join(partials)
        if estimate_tokens(joined) <= max_tokens * COMBINE_THRESHOLD:
            return SummaryResult(joined, total)

        try:
            combined = await self.complete_with_failover(combine_messages(partials, detail_level))
        except (ProviderError, NoKeyAvailable, DecryptionError) as e:
            log.warning("combine_failed_using_partials", chunks=total, error=str(e))
            return SummaryResult(PARTIAL_SEPARATOR.join(partials), total, degraded=True)
        return SummaryResult(combined, total)

    async def generate_summary_with_chunking(
        self,
        text: str,
        detail_level: DetailLevel | str,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        """Text-only form of :meth:`summarize`."""
        result = await self.summarize(text, detail_level, max_tokens, on_progress)
        return result.text

    async def generate_summary_by_page_groups(
        self,
        pages: Sequence[PageText],
        detail_level: DetailLevel | str,
        pages_per_group: int = DEFAULT_PAGES_PER_GROUP,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        """Summarise a document in groups of pages, one section per group.

        Sections get a page-range heading and are joined with a horizontal
        rule. Groups are not merged into one summary.
        """
        if pages_per_group < 1:
            raise ValueError(f"pages_per_group must be at least 1, got: {pages_per_group}")

        non_empty = [page for page in pages if page.text.strip()]
        if not non_empty:
            raise EmptyTextError()

        groups = [
            non_empty[i : i + pages_per_group] for i in range(0, len(non_empty), pages_per_group)
        ]
        if len(groups) == 1:
            _notify(on_progress, 1, 1)
            return await self.generate_summary(_group_text(groups[0]), detail_level)

        sections: list[str] = []
        for index, group in enumerate(groups, start=1):
            _notify(on_progress, index, len(groups))
            first, last = group[0].page_number, group[-1].page_number
            heading = f"Page {first}" if first == last else f"Pages {first}-{last}"
            log.debug("summarizing_page_group", group=index, total=len(groups), pages=heading)
            partial = await self.generate_summary(_group_text(group), detail_level)
            sections.append(f"## {heading}\n\n{partial}")
        return PARTIAL_SEPARATOR.join(sections)

    # ------------------------------------------------------------------
    # Quizzes
    # ------------------------------------------------------------------

    async def generate_quiz(self, summary_content: str) -> list[QuizQuestion]:
        """Build a quiz of 7 multiple-choice and 3 true/false questions.

        The true/false request is told which questions were already asked.
        """
        log.info("quiz_generation_started")
        multiple_choice = await self._quiz_step(multiple_choice_prompt(summary_content))
        true_false = await self._quiz_step(
            true_false_prompt(summary_content, [q.question for q in multiple_choice])
        )
        log.info(
            "quiz_generated",
            multiple_choice=len(multiple_choice),
            true_false=len(true_false),
        )
        return multiple_choice + true_false

    async def _quiz_step(self, prompt: str) -> list[QuizQuestion]:
        messages: list[ChatMessage] = [{"role": "user", "content": prompt}]
        attempt = 1
        while True:
            response = await self.complete_with_failover(messages)
            try:
                return parse_quiz_response(response)
            except QuizParseError as e:
                # Only malformed arrays are worth asking again for.
                if e.code != "JSON_PARSE_ERROR" or attempt >= QUIZ_PARSE_ATTEMPTS:
                    raise
                log.warning("quiz_parse_retry", attempt=attempt, error=e.message)
                attempt += 1


def _notify(callback: ProgressCallback | None, current: int, total: int) -> None:
    if callback is not None:
        callback(current, total)


def _group_text(pages: Sequence[PageText]) -> str:
    return "\n\n".join(page.text for page in pages if page.text)
