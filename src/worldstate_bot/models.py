from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class FeedKind(str, Enum):
    FISSURES = "fissures"
    BARO = "baro"
    ARBITRATION = "arbitration"


class LifecycleStatus(str, Enum):
    UPCOMING = "upcoming"
    ACTIVE = "active"
    EXPIRED = "expired"


@dataclass(frozen=True)
class FeedSource:
    """Where a feed's snapshot lives and how its body is decoded."""

    url: str
    fmt: str = "json"  # "json" | "text"


@dataclass(frozen=True)
class RawSnapshot:
    """One fetched upstream document. Discarded after classification."""

    url: str
    body: Any
    fetched_at: datetime


@dataclass
class ClassifiedEntity:
    """
    Canonical record produced by a feed's classifier.

    ``id``, ``activation_at`` and ``expiry_at`` form the identity used for
    change detection; everything else is display data and may change without
    triggering a new propagation.
    """

    id: str
    display_name: str
    location_name: str
    category: str
    activation_at: datetime
    expiry_at: datetime
    lifecycle_status: LifecycleStatus
    extra_attributes: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.lifecycle_status is LifecycleStatus.ACTIVE


@dataclass(frozen=True)
class Fingerprint:
    entity_id: str
    activation_at: datetime
    expiry_at: datetime

    @classmethod
    def of(cls, entity: ClassifiedEntity) -> "Fingerprint":
        return cls(entity.id, entity.activation_at, entity.expiry_at)


@dataclass
class Subscription:
    subscription_id: int
    feed_kind: FeedKind
    community_id: str
    target_channel_id: str
    match_criteria: Dict[str, Any] = field(default_factory=dict)
    ping_target_id: Optional[str] = None
    last_message_ref: Optional[str] = None
    last_entity_id: Optional[str] = None


@dataclass(frozen=True)
class DeliveryFailure:
    subscription_id: int
    reason: str


@dataclass
class ReconcileReport:
    attempted: int = 0
    succeeded: int = 0
    failed: List[DeliveryFailure] = field(default_factory=list)

    def merge(self, other: "ReconcileReport") -> "ReconcileReport":
        self.attempted += other.attempted
        self.succeeded += other.succeeded
        self.failed.extend(other.failed)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": [
                {"subscription_id": f.subscription_id, "reason": f.reason}
                for f in self.failed
            ],
        }
