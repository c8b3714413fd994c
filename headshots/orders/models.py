"""Order, generation job and generated asset data models.

An order fans out into one generation Job per purchased style. Each
successful Job yields a batch of GeneratedAssets keyed by
(order_id, style, index).

Status rules:
- Job: submitted -> completed | failed, terminal once set
- Order: pending -> paid -> training -> generating -> completed,
  with failed reachable from any non-terminal status
"""

from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    """Generation job lifecycle states."""
    SUBMITTED = "submitted"
    COMPLETED = "completed"
    FAILED = "failed"


class OrderStatus(str, Enum):
    """Customer order lifecycle states."""
    PENDING = "pending"
    PAID = "paid"
    TRAINING = "training"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


JOB_TERMINAL = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})
ORDER_TERMINAL = frozenset({OrderStatus.COMPLETED, OrderStatus.FAILED})

# Forward sequence; FAILED sits outside it
ORDER_SEQUENCE = [
    OrderStatus.PENDING,
    OrderStatus.PAID,
    OrderStatus.TRAINING,
    OrderStatus.GENERATING,
    OrderStatus.COMPLETED,
]


def can_transition_job(current: JobStatus, new: JobStatus) -> bool:
    """Return True if a job may move from ``current`` to ``new``."""
    return current == JobStatus.SUBMITTED and new in JOB_TERMINAL


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    """Return True if an order may move from ``current`` to ``new``.

    Forward moves along ORDER_SEQUENCE are allowed (skipping is fine),
    FAILED is reachable from any non-terminal status, terminal statuses
    never move.
    """
    if current in ORDER_TERMINAL:
        return False
    if new == OrderStatus.FAILED:
        return True
    return ORDER_SEQUENCE.index(new) > ORDER_SEQUENCE.index(current)


# ---------------------------------------------------------------------------
# Style and tier catalogue
# ---------------------------------------------------------------------------

STYLE_NAMES: dict[str, str] = {
    "corporate": "Corporate Executive",
    "tech": "Tech Startup",
    "creative": "Creative Professional",
    "finance": "Finance & Banking",
    "realEstate": "Real Estate",
    "healthcare": "Healthcare",
    "legal": "Legal Professional",
    "academic": "Academic",
    "linkedin": "LinkedIn Optimized",
    "founder": "Startup Founder",
}

STYLES = list(STYLE_NAMES)


@dataclass(frozen=True)
class Tier:
    """A purchasable package."""
    tier_id: str
    name: str
    style_count: int
    headshot_count: int


TIERS: dict[str, Tier] = {
    "starter": Tier("starter", "Starter", style_count=5, headshot_count=40),
    "professional": Tier("professional", "Professional", style_count=10, headshot_count=100),
    "executive": Tier("executive", "Executive", style_count=len(STYLES), headshot_count=200),
}


def styles_for_tier(tier_id: str) -> list[str]:
    """Return the styles purchased with ``tier_id``, in catalogue order.

    Raises:
        KeyError: unknown tier
    """
    tier = TIERS[tier_id]
    return STYLES[: tier.style_count]


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass
class Job:
    """One provider-side generation task for a single style within an order."""

    job_id: str  # provider-assigned, immutable
    order_id: str
    style: str
    status: JobStatus = JobStatus.SUBMITTED
    error: str | None = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @property
    def is_terminal(self) -> bool:
        return self.status in JOB_TERMINAL

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["status"] = self.status.value
        return d


@dataclass
class Order:
    """One customer purchase."""

    order_id: str
    email: str
    tier: str
    status: OrderStatus = OrderStatus.PENDING
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @property
    def is_terminal(self) -> bool:
        return self.status in ORDER_TERMINAL

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["status"] = self.status.value
        return d

    @staticmethod
    def new_id() -> str:
        return f"ord_{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class GeneratedAsset:
    """A generated image persisted into owned storage."""

    order_id: str
    style: str
    index: int
    key: str
    url: str
    job_id: str
    created_at: float = field(default_factory=time.time)

    @property
    def identity(self) -> tuple[str, str, int]:
        return (self.order_id, self.style, self.index)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
