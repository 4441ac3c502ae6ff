"""Compound job status strings: ``<base>[ - <reason>]``."""

from __future__ import annotations

from typing import Iterable, Optional

from pydantic import BaseModel

PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
COMPLETED_NO_ITEMS = "completed_no_items"
FAILED = "failed"
AGENT_SKIPPED = "agent_skipped"

FINAL_STATUSES = frozenset({COMPLETED, COMPLETED_NO_ITEMS, FAILED, AGENT_SKIPPED})
_extra_final: set[str] = set()

SEPARATOR = " - "


def register_final_statuses(tokens: Iterable[str]) -> None:
    """Allow extension status tokens to count as terminal."""
    _extra_final.update(t.strip() for t in tokens if t and t.strip())


class JobStatus(BaseModel):
    """Parsed representation of a job status."""

    base: str
    reason: Optional[str] = None

    @classmethod
    def parse(cls, value: str) -> "JobStatus":
        value = (value or "").strip()
        if SEPARATOR in value:
            base, reason = value.split(SEPARATOR, 1)
            return cls(base=base.strip(), reason=reason.strip() or None)
        return cls(base=value)

    @classmethod
    def failed(cls, reason: Optional[str] = None) -> "JobStatus":
        return cls(base=FAILED, reason=reason)

    @classmethod
    def skipped(cls, reason: Optional[str] = None) -> "JobStatus":
        return cls(base=AGENT_SKIPPED, reason=reason)

    def to_string(self) -> str:
        if self.reason:
            return f"{self.base}{SEPARATOR}{self.reason}"
        return self.base

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return self.to_string()

    @property
    def is_final(self) -> bool:
        return self.base in FINAL_STATUSES or self.base in _extra_final

    @property
    def is_failure(self) -> bool:
        return self.base == FAILED


def is_status_final(value: Optional[str]) -> bool:
    if not value:
        return False
    return JobStatus.parse(value).is_final


def is_status_failure(value: Optional[str]) -> bool:
    if not value:
        return False
    return JobStatus.parse(value).is_failure
