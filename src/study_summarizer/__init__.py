"""Study summarizer: AI summaries and quizzes backed by a rotating provider key pool."""

__version__ = "0.1.0"
