from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from ..errors import ClassificationError
from ..localization import LocalizationResolver
from ..logging_utils import get_logger
from ..models import ClassifiedEntity, FeedKind, FeedSource, RawSnapshot, Subscription

log = get_logger("feeds")

# Discord embed limits
EMBED_FIELD_VALUE_MAX = 1024
EMBED_MAX_FIELDS = 25

DEFAULT_COLOR = 0x3498DB


def make_embed(
    title: str,
    description: str = "",
    fields: Optional[List[Dict[str, Any]]] = None,
    footer: Optional[str] = None,
    thumbnail: Optional[str] = None,
    color: int = DEFAULT_COLOR,
    timestamp: Optional[datetime] = None,
) -> Dict[str, Any]:
    embed: Dict[str, Any] = {"title": title, "color": color}
    if description:
        embed["description"] = description
    if fields:
        embed["fields"] = fields[:EMBED_MAX_FIELDS]
    if footer:
        embed["footer"] = {"text": footer}
    if thumbnail:
        embed["thumbnail"] = {"url": thumbnail}
    if timestamp is not None:
        embed["timestamp"] = timestamp.isoformat()
    return embed


def oid(value: Any) -> str:
    """``{"$oid": "abc"}`` -> ``"abc"``; plain strings pass through."""
    if isinstance(value, dict):
        value = value.get("$oid")
    if not value:
        raise ClassificationError("entry has no id")
    return str(value)


class Feed(ABC):
    """
    Feed-specific behaviour plugged into the shared poll/diff/reconcile engine.

    Subclasses describe where the snapshot comes from, how raw entries become
    ClassifiedEntity records, which entities to propagate, how subscriptions
    match, and what gets posted.
    """

    kind: FeedKind

    def __init__(self, resolver: LocalizationResolver, url: str, fmt: str = "json"):
        self.resolver = resolver
        self.source = FeedSource(url=url, fmt=fmt)

    # ---- classification -------------------------------------------------

    @abstractmethod
    def entries(self, snapshot: RawSnapshot, now: datetime) -> Iterable[Any]:
        """Raw entries of interest in ``snapshot``."""

    @abstractmethod
    def classify_entry(self, raw: Any, now: datetime) -> ClassifiedEntity:
        """Classify one raw entry; raise ClassificationError to drop it."""

    def classify(self, snapshot: RawSnapshot, now: datetime) -> List[ClassifiedEntity]:
        """Classify every entry, dropping (and logging) the ones that fail."""
        out: List[ClassifiedEntity] = []
        try:
            raw_entries = list(self.entries(snapshot, now))
        except (KeyError, TypeError, AttributeError) as e:
            raise ClassificationError(f"{self.kind.value} snapshot malformed: {e}") from e
        for raw in raw_entries:
            try:
                out.append(self.classify_entry(raw, now))
            except (
                ClassificationError,
                AttributeError,
                KeyError,
                TypeError,
                ValueError,
            ) as e:
                log.warning(
                    "entry_skipped feed=%s err=%s entry=%s",
                    self.kind.value,
                    e,
                    str(raw)[:200],
                )
        return out

    @abstractmethod
    def select(
        self, entities: List[ClassifiedEntity], now: datetime
    ) -> Dict[str, ClassifiedEntity]:
        """
        Entities to propagate this pass, keyed by fingerprint slot.

        Raises ClassificationError when the feed's primary entity cannot be
        determined.
        """

    def vacated(
        self, previous: ClassifiedEntity, now: datetime
    ) -> Optional[ClassifiedEntity]:
        """
        Entity to publish once a previously propagated slot is no longer
        selected, or None to leave the last message as it is.
        """
        return None

    # ---- subscriptions ---------------------------------------------------

    def normalize_criteria(self, raw: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Fill in defaults for a subscription's criteria; ValueError if invalid."""
        return {}

    def criteria_key(self, criteria: Dict[str, Any]) -> str:
        """Identity of a subscription within one channel."""
        return ""

    def matches(self, criteria: Dict[str, Any], entity: ClassifiedEntity) -> bool:
        return True

    # ---- rendering -------------------------------------------------------

    @abstractmethod
    def render(self, entity: ClassifiedEntity) -> Dict[str, Any]:
        """Message payload (without mention content) for ``entity``."""

    def should_ping(self, entity: ClassifiedEntity) -> bool:
        return entity.is_active

    def ping_role(
        self, subscription: Subscription, entity: ClassifiedEntity
    ) -> Optional[str]:
        return subscription.ping_target_id or None

    @abstractmethod
    def ping_text(self, entity: ClassifiedEntity) -> str:
        ...

    def ping_payload(self, role_id: str, entity: ClassifiedEntity) -> Dict[str, Any]:
        return {
            "content": f"<@&{role_id}> {self.ping_text(entity)}",
            "allowed_mentions": {"roles": [role_id]},
        }
