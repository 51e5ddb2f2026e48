"""
Logfeed - Remote Source Errors
"""

from typing import Optional

TRANSIENT_STATUSES = frozenset({429, 500, 502, 503, 504})


class RemoteSourceError(Exception):
    """A list or download call against a file source failed"""

    def __init__(self, message: str, status: Optional[int] = None,
                 endpoint: Optional[str] = None, transient: Optional[bool] = None):
        super().__init__(message)
        self.status = status
        self.endpoint = endpoint
        self.attempts = 1
        if transient is None:
            transient = status in TRANSIENT_STATUSES
        self.transient = transient

    def __str__(self) -> str:
        details = []
        if self.status is not None:
            details.append(f"status={self.status}")
        if self.endpoint:
            details.append(f"endpoint={self.endpoint}")
        if self.attempts > 1:
            details.append(f"attempts={self.attempts}")
        base = super().__str__()
        return f"{base} ({', '.join(details)})" if details else base


class RateLimitedError(RemoteSourceError):
    """Upstream answered 429"""

    def __init__(self, message: str, endpoint: Optional[str] = None,
                 retry_after: Optional[float] = None):
        super().__init__(message, status=429, endpoint=endpoint, transient=True)
        self.retry_after = retry_after


class InvalidPathError(RemoteSourceError):
    """Rejected before any request was made"""

    def __init__(self, path: str):
        super().__init__(f"Invalid remote path: {path!r}", transient=False)
        self.path = path
