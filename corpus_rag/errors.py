from __future__ import annotations

from typing import Optional


class CorpusRagError(Exception):
    """Base class for every error raised by the retrieval core."""

    code = "CORPUS_RAG_ERROR"

    def __init__(self, message: str = "", *, code: Optional[str] = None) -> None:
        super().__init__(message)
        if code:
            self.code = code


class AdapterError(CorpusRagError):
    """Capture, permission or storage failure inside a corpus adapter."""

    code = "ADAPTER_ERROR"

    def __init__(self, message: str = "", *, source: Optional[str] = None, code: Optional[str] = None) -> None:
        super().__init__(message, code=code)
        self.source = source


class GeneratorUnavailable(CorpusRagError):
    code = "GENERATOR_UNAVAILABLE"


class GeneratorError(CorpusRagError):
    """The model prompt failed (after the single language retry)."""

    code = "GENERATOR_ERROR"


class TranslatorUnavailable(CorpusRagError):
    code = "TRANSLATOR_UNAVAILABLE"


class ValidationError(CorpusRagError):
    code = "VALIDATION_ERROR"

    def __init__(self, message: str = "", *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class Cancelled(CorpusRagError):
    code = "CANCELLED"


class BudgetExceeded(CorpusRagError):
    """Not even the smallest selected passage fits the prompt budget."""

    code = "BUDGET_EXCEEDED"

    def __init__(self, message: str = "", *, budget: int = 0, required: int = 0) -> None:
        super().__init__(message)
        self.budget = budget
        self.required = required
