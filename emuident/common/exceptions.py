"""Exception hierarchy for emuident.

Every project-specific error derives from :class:`EmuIdentError`. Errors
scoped to one logical unit (I/O, parsing, hashing, source lookups) are
captured into that unit's result by the batch workflows; only catalog-load
and database-initialization failures propagate to callers.
"""

from __future__ import annotations

import traceback
from typing import Any, Optional


# ============================================================================
# BASE EXCEPTIONS
# ============================================================================

class EmuIdentError(Exception):
    """Base class for every emuident error."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        # details already spelled out in the message are not repeated
        extra = {
            k: v for k, v in self.details.items()
            if v not in (None, "") and str(v) not in self.message
        }
        if extra:
            details_str = ", ".join(f"{k}={v}" for k, v in extra.items())
            return f"{self.message} ({details_str})"
        return self.message


# ============================================================================
# CONFIGURATION & INITIALIZATION ERRORS
# ============================================================================

class ConfigurationError(EmuIdentError):
    """Invalid or unreadable configuration."""
    pass


class InitializationError(EmuIdentError):
    """A component required by every later stage could not start."""
    pass


class DatabaseInitializationError(InitializationError):
    """The identity database could not be created or opened."""

    def __init__(self, db_path: str, reason: str = ""):
        msg = f"Could not initialize database {db_path}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, {"path": db_path, "reason": reason})
        self.db_path = db_path


class CatalogLoadError(InitializationError):
    """A checksum catalog could not be loaded at all."""

    def __init__(self, path: str, reason: str = ""):
        msg = f"Could not load catalog {path}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, {"path": path, "reason": reason})
        self.path = path


# ============================================================================
# FILE OPERATION ERRORS
# ============================================================================

class FileOperationError(EmuIdentError):
    """Base class for file errors."""

    def __init__(self, path: str, message: str, details: Optional[dict] = None):
        details = details or {}
        details["path"] = path
        super().__init__(message, details)
        self.path = path


class FileNotFoundError(FileOperationError):
    """File does not exist."""

    def __init__(self, path: str):
        super().__init__(path, f"File not found: {path}")


class FileReadError(FileOperationError):
    """File exists but could not be read."""
    pass


class DirectoryReadError(FileReadError):
    """A directory could not be listed during a scan."""

    def __init__(self, path: str, reason: str = ""):
        msg = f"Could not read directory {path}"
        if reason:
            msg += f": {reason}"
        super().__init__(path, msg, {"reason": reason})


# ============================================================================
# PARSING ERRORS
# ============================================================================

class ParseError(EmuIdentError):
    """Base class for malformed input."""
    pass


class CatalogParseError(ParseError):
    """Malformed checksum catalog markup."""

    def __init__(self, path: str, reason: str = "", line: Optional[int] = None):
        msg = f"Failed to parse catalog {path}"
        if line is not None:
            msg += f" at line {line}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, {"path": path, "line": line, "reason": reason})
        self.path = path
        self.line = line
        self.reason = reason


class ManifestParseError(ParseError):
    """A table-of-contents file (cue, gdi, m3u) could not be read."""

    def __init__(self, path: str, reason: str = ""):
        msg = f"Failed to parse manifest {path}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, {"path": path, "reason": reason})
        self.path = path


# ============================================================================
# HASHING ERRORS
# ============================================================================

class HashError(EmuIdentError):
    """The stream failed while a hash was being computed."""

    def __init__(self, path: str, reason: str = ""):
        msg = f"Hashing failed for {path}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, {"path": path, "reason": reason})
        self.path = path


# ============================================================================
# IDENTITY SOURCE ERRORS
# ============================================================================

class SourceError(EmuIdentError):
    """Base class for identity source failures."""

    def __init__(self, source: str, message: str, details: Optional[dict] = None):
        details = details or {}
        details["source"] = source
        super().__init__(message, details)
        self.source = source


class SourceUnavailableError(SourceError):
    """Source is unauthenticated or unreachable."""

    def __init__(self, source: str, reason: str = ""):
        msg = f"Source {source} is not available"
        if reason:
            msg += f": {reason}"
        super().__init__(source, msg, {"reason": reason})


class SourceRateLimitedError(SourceError):
    """Source refused the call because of its request quota."""

    def __init__(self, source: str, retry_after: Optional[float] = None):
        super().__init__(
            source,
            f"Source {source} is rate limited",
            {"retry_after": retry_after},
        )
        self.retry_after = retry_after


class SourceTimeoutError(SourceError):
    """Source did not answer within its timeout."""

    def __init__(self, source: str, timeout: float):
        super().__init__(
            source,
            f"Source {source} timed out after {timeout}s",
            {"timeout": timeout},
        )
        self.timeout = timeout


class SourceResponseError(SourceError):
    """Source answered with something the core cannot use."""

    def __init__(self, source: str, reason: str = ""):
        msg = f"Unusable response from {source}"
        if reason:
            msg += f": {reason}"
        super().__init__(source, msg, {"reason": reason})


# ============================================================================
# DATABASE ERRORS
# ============================================================================

class DatabaseError(EmuIdentError):
    """Error raised by the identity store."""
    pass


class EntryNotFoundError(DatabaseError):
    """Requested row does not exist."""

    def __init__(self, key: str, table: str = "files"):
        super().__init__(f"Entry not found: {key} in {table}", {"key": key, "table": table})


# ============================================================================
# WORKFLOW ERRORS
# ============================================================================

class WorkflowError(EmuIdentError):
    """Error raised while running a workflow."""
    pass


class WorkflowCancelledError(WorkflowError):
    """The workflow was cancelled between units."""

    def __init__(self, workflow_name: str = ""):
        msg = f"Workflow cancelled: {workflow_name}" if workflow_name else "Workflow cancelled"
        super().__init__(msg, {"workflow": workflow_name})


# ============================================================================
# ARCHIVE ERRORS
# ============================================================================

class ExtractionError(EmuIdentError):
    """The archive collaborator could not extract a member."""

    def __init__(self, container: str, member: str, reason: str = ""):
        msg = f"Could not extract {member} from {container}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, {"container": container, "member": member, "reason": reason})


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def format_exception_chain(exc: BaseException, include_traceback: bool = False) -> str:
    """Format an exception together with its chain of causes.

    Args:
        exc: exception to format
        include_traceback: return the full traceback instead

    Returns:
        The messages of the chain joined by " -> ".
    """
    if include_traceback:
        return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))

    messages = []
    current: Optional[BaseException] = exc
    while current is not None:
        if isinstance(current, EmuIdentError):
            messages.append(str(current))
        else:
            messages.append(f"{type(current).__name__}: {current}")
        current = current.__cause__

    return " -> ".join(messages)
