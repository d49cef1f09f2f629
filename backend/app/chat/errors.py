from __future__ import annotations


class InputValidationError(ValueError):
    """The request cannot be processed as given (missing or non-string message)."""


class PlanRejected(ValueError):
    """A model-proposed query plan failed validation."""


class QueryChainExhausted(RuntimeError):
    """Every query tier failed; the request ends with an error event."""

    def __init__(self, failures: list[tuple[str, Exception]]):
        self.failures = failures
        summary = "; ".join(f"{tier}: {exc}" for tier, exc in failures)
        super().__init__(f"All query tiers failed ({summary})")


__all__ = ["InputValidationError", "PlanRejected", "QueryChainExhausted"]
