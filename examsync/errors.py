"""
Exceptions raised across the package.

Row-level problems are never raised: they are collected as ImportIssue
objects (see model.py). Exceptions are reserved for things a caller must
react to: a rejected upload, a catalog write that failed for one row, and a
catalog that is not reachable at all.
"""

from __future__ import annotations


class ExamSyncError(Exception):
    """Base class for every error raised by examsync."""


class UploadRejected(ExamSyncError):
    """The uploaded file violates a pre-parse constraint (size, type, empty)."""


class CatalogError(ExamSyncError):
    """
    A catalog refused one create/update call.

    The import engine records it as a persistence failure for that row and
    moves on to the next one.
    """


class CatalogUnavailable(ExamSyncError):
    """
    The catalog cannot be reached or read at all.

    Unlike CatalogError this aborts the whole import run.
    """


class LinkError(ExamSyncError):
    """A link decision was requested for a suggestion that cannot be accepted."""
