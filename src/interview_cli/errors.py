"""Exception types raised by the interview package."""

from __future__ import annotations


class InterviewError(Exception):
    """Base class for all interview errors."""


class QuestionsValidationError(InterviewError, ValueError):
    """Questions document does not match the expected schema."""


class QuestionsFileError(InterviewError):
    """Questions file is missing or cannot be parsed."""


class SnapshotError(InterviewError, ValueError):
    """Saved interview document cannot be decoded."""


class SnapshotFormatError(SnapshotError):
    """Document has no embedded interview data block (not a snapshot at all)."""


class SnapshotCorruptError(SnapshotError):
    """Embedded interview data block exists but is not valid JSON."""


class RegistryLockError(InterviewError):
    """Exclusive lock on the session registry could not be acquired."""


class BrowserLaunchError(InterviewError):
    """Launching the browser command failed."""


class SubmissionError(InterviewError, ValueError):
    """Submitted answers are malformed or incomplete."""

    def __init__(self, message: str, missing: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing = missing or []
