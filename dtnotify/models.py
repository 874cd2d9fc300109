"""Core data models for dtnotify."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class BuildResult(str, Enum):
    SUCCESS = "SUCCESS"
    UNSTABLE = "UNSTABLE"
    FAILURE = "FAILURE"
    ABORTED = "ABORTED"
    NOT_BUILT = "NOT_BUILT"


class NotificationState(str, Enum):
    """States communicated to the monitoring server."""

    SUCCESSFUL = "SUCCESSFUL"
    FAILED = "FAILED"
    INPROGRESS = "INPROGRESS"


@dataclass(frozen=True)
class BuildSnapshot:
    """Read-only view of a build, as supplied by the CI runtime."""

    job_name: str
    number: int
    display_name: str = ""
    result: BuildResult | None = None   # None → still running
    description: str | None = None
    parent_job_name: str | None = None  # full name of the enclosing folder
    root_url: str | None = None
    url: str | None = None              # None → derived from root_url
    env: dict[str, str] = field(default_factory=dict)

    @property
    def full_display_name(self) -> str:
        return self.display_name or f"{self.job_name} #{self.number}"

    def run_url(self, root_url: str) -> str:
        if self.url:
            return self.url
        return f"{root_url.rstrip('/')}/job/{self.job_name}/{self.number}/"


@dataclass(frozen=True)
class ClientCertificate:
    """Key material for mutual TLS."""

    cert_file: str
    key_file: str | None = None
    password: str | None = None


@dataclass(frozen=True)
class NotificationResult:
    """Outcome of a single transport attempt."""

    success: bool
    message: str = ""

    @classmethod
    def succeeded(cls) -> NotificationResult:
        return cls(success=True)

    @classmethod
    def failed(cls, message: str) -> NotificationResult:
        return cls(success=False, message=message)
