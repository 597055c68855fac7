# poolroute/core/dispatch/digest.py
"""Digest and delivery-log records."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional


class DigestWindow(str, Enum):
    MORNING = "MORNING"    # full plan
    MIDDAY = "MIDDAY"      # delta
    EVENING = "EVENING"    # delta

    @property
    def is_full_plan(self) -> bool:
        return self is DigestWindow.MORNING

    @classmethod
    def parse(cls, value: str) -> "DigestWindow":
        try:
            return cls(value.strip().upper())
        except ValueError:
            raise ValueError(f"Unknown digest window: {value!r}") from None


class DigestStatus(str, Enum):
    QUEUED = "QUEUED"
    SENT = "SENT"
    FAILED = "FAILED"


class DeliveryStatus(str, Enum):
    SENT = "SENT"
    FAILED = "FAILED"


class RecipientRole(str, Enum):
    CUSTOMER = "CUSTOMER"
    TECH = "TECH"


@dataclass
class Digest:
    id: str
    technician_id: str
    route_date: date
    window: str
    status: str
    scheduled_for: datetime
    sent_at: Optional[datetime] = None


@dataclass
class OutboundEmail:
    """A rendered message ready for the mail transport."""
    to: str
    subject: str
    text: str
    to_name: Optional[str] = None
    html: Optional[str] = None


@dataclass
class DeliveryLogEntry:
    """
    One delivery attempt. Append-only: written once per attempt, never updated.
    """
    recipient_email: str
    recipient_role: str
    subject: str
    body_text: str
    status: str
    recipient_name: Optional[str] = None
    body_html: Optional[str] = None
    error_message: Optional[str] = None
    sent_at: Optional[datetime] = None
    customer_id: Optional[str] = None
    technician_id: Optional[str] = None
    job_id: Optional[str] = None
    digest_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None


@dataclass
class DeliveryRefs:
    """Records a delivery attempt is traced back to."""
    customer_id: Optional[str] = None
    technician_id: Optional[str] = None
    job_id: Optional[str] = None
    digest_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class PassReport:
    """Summary of one dispatch pass."""
    window: str
    route_date: Optional[date] = None
    groups: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    claimed: int = 0
    errors: int = 0
    lease_acquired: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "window": self.window,
            "route_date": self.route_date.isoformat() if self.route_date else None,
            "groups": self.groups,
            "sent": self.sent,
            "failed": self.failed,
            "skipped": self.skipped,
            "claimed": self.claimed,
            "errors": self.errors,
            "lease_acquired": self.lease_acquired,
        }
