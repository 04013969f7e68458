"""
Errors raised by generation, scoring and the store.

Each error knows the HTTP status it maps to so the API layer can render
it without a per-type table.
"""
from typing import Dict, List, Optional


class ExamBankError(Exception):
    status_code = 500
    error_type = "internal_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def details(self) -> dict:
        return {}

    def to_dict(self) -> dict:
        return {"message": self.message, "type": self.error_type, **self.details()}


class ValidationError(ExamBankError):
    status_code = 400
    error_type = "validation_error"

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        super().__init__(message)
        self.problems = problems or []

    def details(self) -> dict:
        return {"problems": self.problems}


class NotFound(ExamBankError):
    status_code = 404
    error_type = "not_found"


class InsufficientQuestions(ExamBankError):
    status_code = 400
    error_type = "insufficient_questions"

    def __init__(
        self,
        required: Dict[str, int],
        available: Dict[str, int],
        suggestions: Optional[List[dict]] = None,
    ):
        self.required = dict(required)
        self.available = dict(available)
        self.missing = {
            d: required[d] - available.get(d, 0)
            for d in required
            if required[d] > available.get(d, 0)
        }
        self.suggestions = suggestions or []
        short = ", ".join(f"{d}: {n}" for d, n in self.missing.items())
        super().__init__(f"Not enough questions available ({short} missing)")

    def details(self) -> dict:
        return {
            "required": self.required,
            "available": self.available,
            "missing": self.missing,
            "suggestions": self.suggestions,
        }


class AnswerCountMismatch(ExamBankError):
    status_code = 400
    error_type = "answer_count_mismatch"

    def __init__(self, expected: int, received: int):
        self.expected = expected
        self.received = received
        super().__init__(f"Expected {expected} answers, got {received}")

    def details(self) -> dict:
        return {"expected": self.expected, "received": self.received}


class GenerationTimeout(ExamBankError):
    status_code = 503
    error_type = "generation_timeout"
    retryable = True

    def __init__(self, elapsed: float, budget: float):
        self.elapsed = elapsed
        self.budget = budget
        super().__init__(f"Variation generation exceeded its {budget:.1f}s budget")

    def details(self) -> dict:
        return {"elapsed": round(self.elapsed, 3), "budget": self.budget, "retryable": True}
