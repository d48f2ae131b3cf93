"""Failures raised by the assistant core and its collaborators."""
from typing import Iterable, Optional


class AssistantError(Exception):
    """Base class for every failure the chat turn knows how to report."""


class ValidationFailed(AssistantError):
    """Function call arguments are missing or malformed."""

    def __init__(self, message: str, fields: Iterable[str] = ()):
        super().__init__(message)
        self.fields = sorted(set(fields))


class TargetNotFound(AssistantError):
    """An edit/remove target did not resolve to exactly one task."""

    def __init__(self, target: str, matches: int = 0):
        self.target = target
        self.matches = matches
        if matches > 1:
            message = f"{matches} tasks match '{target}'"
        else:
            message = f"Could not find task matching '{target}'"
        super().__init__(message)


class StoreUnavailable(AssistantError):
    """The task store or search backend failed."""

    def __init__(self, message: str = "Task store unavailable", cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class OracleFailure(AssistantError):
    """The intent oracle call failed, timed out, or returned unusable output."""
