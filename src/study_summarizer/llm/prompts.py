"""Prompt texts for summaries, chunk combination and quizzes."""

from __future__ import annotations

from enum import Enum

from study_summarizer.llm.client import ChatMessage


class DetailLevel(str, Enum):
    """How long and thorough a summary should be."""

    BRIEF = "brief"
    MEDIUM = "medium"
    DETAILED = "detailed"


BASE_PROMPT = """You are an assistant that writes summaries of study material.
Analyse the text you are given and write a clear, well structured summary.
Always answer in the same language as the source text.
Format the answer in Markdown (headings, lists, bold, etc.)."""

_LEVEL_INSTRUCTIONS: dict[DetailLevel, str] = {
    DetailLevel.BRIEF: """DETAIL LEVEL: BRIEF

Requirements:
- Write bullet points of the key concepts
- Every bullet must be a complete, understandable sentence
- Include at least 8-12 main points
- Group the points by topic under subheadings (##)
- Keep the summary concise but complete in its essential concepts
- Put key terms in bold""",
    DetailLevel.MEDIUM: """DETAIL LEVEL: MEDIUM

Requirements:
- Write 2-3 paragraphs for every main section
- Every paragraph should have 3-4 sentences
- Cover the main concepts with clear explanations
- Balance brevity and completeness, do not be too short
- Use subheadings (##, ###) to organise the content
- Put key terms in bold
- The summary must cover every important topic of the text""",
    DetailLevel.DETAILED: """DETAIL LEVEL: DETAILED (MAXIMUM LENGTH)

IMPORTANT: the summary must be LONG and COMPLETE. Do not abbreviate.

Length:
- The summary should be at least 40-50% of the length of the source text
- Every main section should have 4-6 paragraphs of 4-6 full sentences
- Do not skip any important concept

Content:
- Give complete, in-depth explanations of every concept
- Include detailed definitions of all important terms
- Add practical examples and use cases where possible
- Explain how the concepts relate to each other
- Include historical or theoretical context where relevant

Structure:
- Use headings (##) and subheadings (###) to organise the content
- Use bullet lists for specific details and bold for key terms
- Include a short introduction and conclusion""",
}


def system_prompt(detail_level: DetailLevel | str) -> str:
    """System prompt for a summary at *detail_level*."""
    level = DetailLevel(detail_level)
    return f"{BASE_PROMPT}\n\n{_LEVEL_INSTRUCTIONS[level]}"


def summary_messages(text: str, detail_level: DetailLevel | str) -> list[ChatMessage]:
    """Messages asking for a summary of *text*."""
    return [
        {"role": "system", "content": system_prompt(detail_level)},
        {
            "role": "user",
            "content": (
                "TEXT TO SUMMARISE:\n\n"
                f"{text}\n\n"
                "---\n\n"
                "Write the summary in Markdown following the instructions above."
            ),
        },
    ]


COMBINE_SYSTEM_PROMPT = """You merge partial summaries of consecutive sections of one document
into a single coherent summary.
- Keep the structure and the Markdown formatting of the partial summaries
- Remove repetitions between sections and smooth the transitions
- Do not add any information that is not in the partial summaries
- Always answer in the same language as the partial summaries"""


def combine_messages(partials: list[str], detail_level: DetailLevel | str) -> list[ChatMessage]:
    """Messages asking the model to merge *partials* into one document."""
    sections = "\n\n".join(
        f"### Part {index}\n\n{partial}" for index, partial in enumerate(partials, start=1)
    )
    level = DetailLevel(detail_level)
    return [
        {"role": "system", "content": COMBINE_SYSTEM_PROMPT},
        {
            "role": "user",
            "content": (
                f"Merge these {len(partials)} partial summaries into one coherent "
                f"summary (detail level: {level.value}).\n\n"
                f"{sections}"
            ),
        },
    ]


def multiple_choice_prompt(summary_content: str, count: int = 7) -> str:
    """Prompt for the multiple-choice half of a quiz."""
    return f"""You are an assistant that writes quizzes to check learning.
Write exactly {count} MULTIPLE CHOICE questions based ONLY on the text below.

RULES:
- Write ONLY multiple_choice questions, NO true/false
- Every question has exactly 4 options
- Questions are in the same language as the text
- Questions cover the main concepts of the material
- Wrong options are plausible but clearly wrong
- Every question has a clear explanation of the correct answer
- Use ONLY the text below, not outside knowledge

Answer ONLY with a valid JSON array and no other text.
Format:
[
  {{
    "question": "question text?",
    "type": "multiple_choice",
    "options": ["option A", "option B", "option C", "option D"],
    "correctAnswer": "exact text of the correct option",
    "explanation": "explanation"
  }}
]

correctAnswer MUST match one of the options exactly.

TEXT:
---
{summary_content}
---

Write {count} multiple choice questions. Answer ONLY with the JSON array."""


def true_false_prompt(
    summary_content: str, existing_questions: list[str], count: int = 3
) -> str:
    """Prompt for the true/false half of a quiz, avoiding topics already asked."""
    asked = "\n".join(f"{i}. {q}" for i, q in enumerate(existing_questions, start=1))
    return f"""You are an assistant that writes quizzes to check learning.
Write exactly {count} TRUE/FALSE items based ONLY on the text below.

RULES:
- Write ONLY true/false items, NO multiple choice
- Every item MUST be a declarative STATEMENT ending with a full stop, NEVER a question
- The user must be able to answer simply "True" or "False"
- Use ONLY the text below, not outside knowledge
- Statements are in the same language as the text

These questions are ALREADY in the quiz. Do NOT repeat their topics:
{asked}

Answer ONLY with a valid JSON array and no other text.
Format:
[
  {{
    "question": "A declarative statement.",
    "type": "true_false",
    "correctAnswer": "True",
    "explanation": "why it is true or false"
  }}
]

IMPORTANT: "correctAnswer" must be exactly "True" or "False". Do NOT include "options".

TEXT:
---
{summary_content}
---

Write {count} true/false statements. Answer ONLY with the JSON array."""
