from __future__ import annotations

from typing import Dict, Optional

from .models import ClassifiedEntity, Fingerprint

DEFAULT_SLOT = "primary"


def is_significant(candidate: ClassifiedEntity, last: Optional[Fingerprint]) -> bool:
    """
    True when the candidate's identity or timing differs from ``last``.

    Display-only changes (names, inventory text) are deliberately ignored.
    """
    if last is None:
        return True
    return (
        candidate.id != last.entity_id
        or candidate.activation_at != last.activation_at
        or candidate.expiry_at != last.expiry_at
    )


class FingerprintLedger:
    """
    Last-propagated fingerprint per slot for one feed.

    Single-entity feeds use one slot; grouped feeds keep one slot per group so
    each group's changes are detected independently. Owned by a scheduler and
    only advanced by its scheduled path.
    """

    def __init__(self) -> None:
        self._fingerprints: Dict[str, Fingerprint] = {}

    def get(self, slot: str = DEFAULT_SLOT) -> Optional[Fingerprint]:
        return self._fingerprints.get(slot)

    def is_significant(self, entity: ClassifiedEntity, slot: str = DEFAULT_SLOT) -> bool:
        return is_significant(entity, self.get(slot))

    def advance(self, entity: ClassifiedEntity, slot: str = DEFAULT_SLOT) -> None:
        self._fingerprints[slot] = Fingerprint.of(entity)

    def forget(self, slot: str = DEFAULT_SLOT) -> None:
        self._fingerprints.pop(slot, None)

    def __len__(self) -> int:
        return len(self._fingerprints)

    def snapshot(self) -> Dict[str, Fingerprint]:
        return dict(self._fingerprints)
