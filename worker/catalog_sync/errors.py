from __future__ import annotations


class SyncError(Exception):
    """Base class for everything the sync pipeline raises on purpose."""


class UpstreamError(SyncError):
    def __init__(self, message: str, status_code: int | None = None, body: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class UpstreamThrottled(UpstreamError):
    """429 responses kept coming after the retry budget was spent."""


class UpstreamUnavailable(UpstreamError):
    """Network failure after retries, or a non-2xx/non-429 response."""


class MalformedResponse(UpstreamError):
    """The upstream answered 2xx but the payload did not match the expected shape."""


class BusinessKeyConflict(SyncError):
    def __init__(self, key: str, owner: object, claimant: object, title: str | None = None, label: str = "EAN") -> None:
        self.key = key
        self.label = label
        self.owner = owner
        self.claimant = claimant
        self.title = title
        super().__init__(self.describe())

    def describe(self) -> str:
        message = f"Duplicate {self.label} {self.key} found for {self.claimant} (already owned by {self.owner})"
        if self.title:
            message += f" (product: {self.title})"
        return message


class PersistenceFailure(SyncError):
    pass


class FatalSetupFailure(SyncError):
    """Missing configuration or unusable initial state; aborts the whole run."""
