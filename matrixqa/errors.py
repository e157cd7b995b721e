"""Exception taxonomy for the orchestration engine."""

from __future__ import annotations


class MatrixQAError(Exception):
    """Base class for all errors raised by matrixqa."""


class ConfigInvalid(MatrixQAError):
    """Submission rejected before any scheduling took place."""

    def __init__(self, problems: list[str] | str):
        if isinstance(problems, str):
            problems = [problems]
        self.problems = list(problems)
        super().__init__("Invalid configuration: " + "; ".join(self.problems))


class InfraTransient(MatrixQAError):
    """Infrastructure instability (driver timeout, capture failure). Retryable."""


class BaselineConflict(MatrixQAError):
    """An approval tried to reuse an existing release version for a key."""


class InvalidStateTransition(MatrixQAError):
    """A TestRun was moved between states its lifecycle does not allow."""
