"""
Error reporting models.

``ErrorRecord`` is the raw, diagnostics-grade description of a failure;
``ClassifiedError`` is what the UI collaborator actually shows.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel

from thaicraft.models.enums import ErrorCategory


class ErrorRecord(BaseModel):
    """A single failure as captured at the boundary that caught it.

    Attributes
    ----------
    message:
        Raw exception or server text.  Never shown unfiltered.
    stack:
        Formatted traceback, for the "technical details" expansion only.
    timestamp:
        Epoch milliseconds when the failure was captured.
    boundary_flag:
        ``True`` when the failure was caught by a top-level error
        boundary rather than a specific flow step.
    context:
        Free-form origin label (see ``ErrorContext``).
    """

    message: str
    stack: Optional[str] = None
    timestamp: int
    boundary_flag: bool = False
    context: Optional[str] = None


class ClassifiedError(BaseModel):
    """Dismissable notification content derived from an ``ErrorRecord``."""

    title: str
    message: str
    category: ErrorCategory
    record: Optional[ErrorRecord] = None
