from __future__ import annotations


class TimelineError(RuntimeError):
    pass


class AuthenticationError(TimelineError):
    pass


class ApiError(TimelineError):
    def __init__(self, status: int, body: str, *, url: str = "") -> None:
        self.status = int(status)
        self.body = body or ""
        self.url = url
        super().__init__(f"GitHub API error (HTTP {self.status}): {self.body[:500]}")


class MaxRetriesExceeded(TimelineError):
    pass


class NetworkError(TimelineError):
    pass


class CommitParseError(TimelineError, ValueError):
    pass
