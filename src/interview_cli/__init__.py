"""Interview: gather answers to a questions document through a local browser form."""

from interview_cli.api import interview
from interview_cli.cli import get_version
from interview_cli.errors import (
    BrowserLaunchError,
    InterviewError,
    QuestionsFileError,
    QuestionsValidationError,
    RegistryLockError,
    SnapshotCorruptError,
    SnapshotError,
    SnapshotFormatError,
    SubmissionError,
)
from interview_cli.loader import load_questions
from interview_cli.models import (
    CancelReason,
    InterviewResult,
    QueuedInfo,
    RegistryEntry,
    ResponseItem,
    SavedFrom,
    SavedInterview,
    SessionState,
)
from interview_cli.registry import SessionRegistry, get_active_sessions
from interview_cli.schema import validate_questions
from interview_cli.server import InterviewServerHandle, start_interview_server
from interview_cli.session import InterviewSession
from interview_cli.snapshot import decode_snapshot, encode_snapshot

__version__ = get_version()

__all__ = [
    "BrowserLaunchError",
    "CancelReason",
    "InterviewError",
    "InterviewResult",
    "InterviewServerHandle",
    "InterviewSession",
    "QueuedInfo",
    "QuestionsFileError",
    "QuestionsValidationError",
    "RegistryEntry",
    "RegistryLockError",
    "ResponseItem",
    "SavedFrom",
    "SavedInterview",
    "SessionRegistry",
    "SessionState",
    "SnapshotCorruptError",
    "SnapshotError",
    "SnapshotFormatError",
    "SubmissionError",
    "__version__",
    "decode_snapshot",
    "encode_snapshot",
    "get_active_sessions",
    "interview",
    "load_questions",
    "start_interview_server",
    "validate_questions",
]
