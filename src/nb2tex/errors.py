"""Exceptions raised by the nb2tex conversion pipeline."""

from __future__ import annotations

from typing import Optional


class ConversionError(RuntimeError):
    """A single notebook could not be converted; batch callers continue with the next one."""


class NotebookUnreadable(ConversionError):
    pass


class ExternalToolUnavailable(ConversionError):
    pass


class ExternalToolFailed(ConversionError):
    def __init__(self, message: str, returncode: Optional[int] = None, output: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.output = output


class DocumentStructureError(ConversionError):
    pass


class TemporaryIOError(ConversionError):
    pass
