# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: one exception type for everything the core can fail at, tagged with the kind of failure so
callers (service layer, HTTP routes, console) can decide how to render it without parsing messages.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    COLLECTION = "collection"  # could not read the process/service table
    PERSISTENCE = "persistence"  # event store, log file or report write failed
    UNSUPPORTED_PLATFORM = "unsupported_platform"  # the OS lacks the facility
    INVALID_REQUEST = "invalid_request"  # bad id, unknown action, malformed input
    FORBIDDEN = "forbidden"  # cross-site or non-JSON request to a state-changing route


class SentinelError(Exception):
    """plain descriptive message plus an ErrorKind tag."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.PERSISTENCE) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind

    def __str__(self) -> str:
        return self.message
