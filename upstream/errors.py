from __future__ import annotations


class UpstreamError(Exception):
    """Non-2xx (or unreachable) response from the hospital API."""

    def __init__(self, status: int, details: str = ""):
        super().__init__(f"upstream_error:{status}")
        self.status = status
        self.details = details


class MalformedResponseError(Exception):
    """2xx response whose body is not the expected JSON shape."""

    def __init__(self, details: str = ""):
        super().__init__("malformed_upstream_response")
        self.details = details


class SessionUnavailableError(Exception):
    """Cookie harvest failed; callers degrade to an empty session header."""
