"""Error taxonomy shared by the queue, executor and worker."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class FieldError:
    """One field-level validation failure."""

    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path}: {self.message}"


class ValidationError(ValueError):
    """Malformed payload; raised before anything is persisted."""

    def __init__(self, errors: list[FieldError]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(str(error) for error in self.errors) or "invalid payload")


class NotFoundError(LookupError):
    """Operation targeted a job or repository id that does not exist."""

    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class ClaimConflict(RuntimeError):
    """Another poller claimed the selected job first."""


class ExecutionError(RuntimeError):
    """Sandbox run failed to build, start, stream or exit cleanly."""

    def __init__(self, message: str, *, exit_code: int | None = None) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class ReconciliationSkip(RuntimeError):
    """Task document could not be read back after a run."""
