"""Registry of classified items.

Persists ClassifiedItems in a document store, enforces the record
invariants on every write and maintains the relationship graph as an
adjacency structure keyed by item id.
"""

import logging
import threading
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Dict, FrozenSet, Iterator, List, Optional, Tuple

from .exceptions import InvariantViolation, ItemNotFound
from .models import (
    AXES,
    RELATIONSHIP_KINDS,
    REQUIRED_AXES,
    SYMMETRIC_KINDS,
    ClassifiedItem,
    DuplicateMarker,
    Tier,
    to_iso,
    utcnow,
)
from .store import DocumentStore, MemoryStore

logger = logging.getLogger(__name__)

ITEMS = 'items'
DUPLICATES = 'duplicates'


class _KeyedLocks:
    """Per-key locks, always acquired in sorted key order."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    @contextmanager
    def hold(self, *keys: str):
        ordered = sorted(set(keys))
        with self._guard:
            locks = [self._locks.setdefault(key, threading.RLock()) for key in ordered]
        for lock in locks:
            lock.acquire()
        try:
            yield
        finally:
            for lock in reversed(locks):
                lock.release()


class Registry:
    """
    Persistent store of classified items.

    Writes to one item are serialized with a per-id lock; writes touching two
    items (symmetric relationships) hold both locks and go to the store in a
    single atomic put. Items are never deleted.

    Example:
        >>> registry = Registry()
        >>> registry.file(item_a)
        >>> registry.file(item_b)
        >>> registry.add_relationship(item_a.id, item_b.id, 'conflicts')
        >>> item_a.id in registry.get(item_b.id).related('conflicts')
        True
    """

    def __init__(self, store: DocumentStore = None):
        """Initialize the registry and rebuild indexes from the store.

        Args:
            store: Backing document store (in-memory when omitted)
        """
        self._store = store or MemoryStore()
        self._locks = _KeyedLocks()
        self._index_lock = threading.RLock()
        self._axis_index: Dict[Tuple[str, str], Dict[str, Optional[datetime]]] = defaultdict(dict)
        self._reverse: Dict[str, Dict[str, set]] = {
            kind: defaultdict(set) for kind in RELATIONSHIP_KINDS
        }
        self._fingerprints: Dict[str, Tuple[FrozenSet[int], Optional[datetime]]] = {}
        self._indexed: Dict[str, ClassifiedItem] = {}

        for _, record in self._store.scan(ITEMS):
            self._index(ClassifiedItem.from_dict(record))

        logger.info(f"Registry loaded with {len(self._indexed)} items")

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    def _index(self, item: ClassifiedItem):
        with self._index_lock:
            previous = self._indexed.get(item.id)
            if previous is not None:
                for axis, value in previous.taxonomy.items():
                    self._axis_index[(axis, value)].pop(item.id, None)
                for kind in RELATIONSHIP_KINDS:
                    for target in previous.related(kind):
                        self._reverse[kind][target].discard(item.id)

            for axis, value in item.taxonomy.items():
                self._axis_index[(axis, value)][item.id] = item.validated_at
            for kind in RELATIONSHIP_KINDS:
                for target in item.related(kind):
                    self._reverse[kind][target].add(item.id)

            self._fingerprints[item.id] = (item.fingerprint, item.captured_at)
            self._indexed[item.id] = item

    def _write(self, *items: ClassifiedItem) -> List[ClassifiedItem]:
        """Persist items atomically, bumping versions, then update indexes.

        Indexes and callers get separate copies rebuilt from the stored
        records, so timestamps are normalized to UTC the same way a reload
        would and caller mutations never reach the index.
        """
        records = {
            item.id: replace(item, version=item.version + 1).to_dict() for item in items
        }
        self._store.put_many(ITEMS, records)
        for record in records.values():
            self._index(ClassifiedItem.from_dict(record))
        return [ClassifiedItem.from_dict(record) for record in records.values()]

    def _load(self, item_id: str) -> Optional[ClassifiedItem]:
        record = self._store.get(ITEMS, item_id)
        return ClassifiedItem.from_dict(record) if record is not None else None

    def _require(self, item_id: str) -> ClassifiedItem:
        item = self._load(item_id)
        if item is None:
            raise ItemNotFound(item_id)
        return item

    def _require_active(self, item_id: str) -> ClassifiedItem:
        item = self._require(item_id)
        if item.retired:
            raise InvariantViolation(
                f"Item {item_id} was superseded by {item.superseded_by} and is read-only"
            )
        return item

    @staticmethod
    def _check_kind(kind: str):
        if kind not in RELATIONSHIP_KINDS:
            raise InvariantViolation(
                f"Unknown relationship kind '{kind}'; expected one of {', '.join(RELATIONSHIP_KINDS)}"
            )

    # ------------------------------------------------------------------
    # Filing and lookup
    # ------------------------------------------------------------------

    def _check_file(self, item: ClassifiedItem, existing: Optional[ClassifiedItem]):
        if not isinstance(item.tier, Tier):
            raise InvariantViolation(f"Item {item.id} has invalid tier {item.tier!r}")

        for axis in item.taxonomy:
            if axis not in AXES:
                raise InvariantViolation(f"Item {item.id} has unknown taxonomy axis '{axis}'")
        for axis in REQUIRED_AXES:
            if not item.taxonomy.get(axis):
                raise InvariantViolation(f"Item {item.id} is missing required axis '{axis}'")

        validated_at = item.validated_at or (existing.validated_at if existing else None)
        if item.tier is Tier.PRACTICE and validated_at is None:
            raise InvariantViolation(
                f"Item {item.id} cannot be filed as practice without human validation"
            )

        if existing is None:
            if any(item.related(kind) for kind in RELATIONSHIP_KINDS):
                raise InvariantViolation(
                    f"Item {item.id}: relationships must be added with add_relationship"
                )
            if item.superseded_by is not None:
                raise InvariantViolation(
                    f"Item {item.id}: supersession must be recorded with retire"
                )
            return

        if existing.retired:
            raise InvariantViolation(
                f"Item {item.id} was superseded by {existing.superseded_by} and cannot be re-filed"
            )
        if item.tier < existing.tier:
            raise InvariantViolation(
                f"Item {item.id} would be downgraded from {existing.tier.value} to "
                f"{item.tier.value}; use override_tier"
            )

    def file(self, item: ClassifiedItem) -> ClassifiedItem:
        """File a classified item.

        Re-filing an existing id keeps its relationships, validation and
        retirement state; the tier may only go up.

        Args:
            item: Item to file

        Returns:
            The stored item

        Raises:
            InvariantViolation: If the item breaks a record invariant;
                nothing is written in that case
        """
        with self._locks.hold(item.id):
            existing = self._load(item.id)
            self._check_file(item, existing)

            if existing is None:
                record = replace(
                    item,
                    filed_at=item.filed_at or utcnow(),
                    pending_validation=item.pending_validation and item.tier is not Tier.PRACTICE,
                    version=0,
                )
            else:
                record = replace(
                    item,
                    relationships=existing.relationships,
                    superseded_by=existing.superseded_by,
                    validated_at=item.validated_at or existing.validated_at,
                    filed_at=existing.filed_at,
                    pending_validation=item.pending_validation and item.tier is not Tier.PRACTICE,
                    version=existing.version,
                )

            stored, = self._write(record)

        logger.info(f"Filed item {stored.id} as {stored.tier.value} (version {stored.version})")
        return stored

    def get(self, item_id: str) -> Optional[ClassifiedItem]:
        """Fetch an item by id, or None."""
        return self._load(item_id)

    def items(self) -> Iterator[ClassifiedItem]:
        """Iterate over every filed item, retired ones included, by id."""
        with self._index_lock:
            ids = sorted(self._indexed)
        for item_id in ids:
            item = self._load(item_id)
            if item is not None:
                yield item

    def __len__(self) -> int:
        with self._index_lock:
            return len(self._indexed)

    def __contains__(self, item_id) -> bool:
        with self._index_lock:
            return item_id in self._indexed

    def query_by_axis(
        self,
        axis: str,
        value: str,
        include_retired: bool = False
    ) -> Iterator[ClassifiedItem]:
        """Lazily yield items whose taxonomy ``axis`` equals ``value``.

        Ordered by validation time (most recent first, unvalidated last),
        then by id.

        Args:
            axis: Taxonomy axis
            value: Axis value
            include_retired: Whether to include superseded items

        Raises:
            ValueError: If axis is not a taxonomy axis
        """
        if axis not in AXES:
            raise ValueError(f"Unknown taxonomy axis '{axis}'")

        with self._index_lock:
            entries = list(self._axis_index.get((axis, value), {}).items())

        entries.sort(key=lambda e: (
            e[1] is None,
            -e[1].timestamp() if e[1] is not None else 0.0,
            e[0],
        ))

        for item_id, _ in entries:
            item = self._load(item_id)
            if item is None or item.taxonomy.get(axis) != value:
                continue
            if item.retired and not include_retired:
                continue
            yield item

    def fingerprints(self) -> List[Tuple[str, FrozenSet[int], Optional[datetime]]]:
        """Snapshot of (item_id, fingerprint, captured_at) for every filed item."""
        with self._index_lock:
            return [
                (item_id, fingerprint, captured_at)
                for item_id, (fingerprint, captured_at) in self._fingerprints.items()
            ]

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    @staticmethod
    def _with_edge(item: ClassifiedItem, kind: str, target: str, present: bool) -> ClassifiedItem:
        relationships = dict(item.relationships)
        edges = set(relationships.get(kind, frozenset()))
        if present:
            edges.add(target)
        else:
            edges.discard(target)
        relationships[kind] = frozenset(edges)
        return replace(item, relationships=relationships)

    def _set_relationship(self, from_id: str, to_id: str, kind: str, present: bool):
        self._check_kind(kind)
        if from_id == to_id:
            raise InvariantViolation(f"Item {from_id} cannot be related to itself")

        with self._locks.hold(from_id, to_id):
            source = self._require(from_id)
            target = self._require(to_id)

            updates = []
            if (to_id in source.related(kind)) != present:
                updates.append(self._with_edge(source, kind, to_id, present))
            if kind in SYMMETRIC_KINDS and (from_id in target.related(kind)) != present:
                updates.append(self._with_edge(target, kind, from_id, present))

            if updates:
                self._write(*updates)

    def add_relationship(self, from_id: str, to_id: str, kind: str):
        """Add a relationship edge.

        Symmetric kinds (conflicts, alternatives) are written in both
        directions atomically; asymmetric kinds (requires, enables) write the
        forward edge and are reachable backwards through incoming().

        Raises:
            ItemNotFound: If either item does not exist
            InvariantViolation: For self-edges or unknown kinds
        """
        self._set_relationship(from_id, to_id, kind, True)
        logger.info(f"Added {kind} edge {from_id} -> {to_id}")

    def remove_relationship(self, from_id: str, to_id: str, kind: str):
        """Remove a relationship edge (both directions for symmetric kinds)."""
        self._set_relationship(from_id, to_id, kind, False)
        logger.info(f"Removed {kind} edge {from_id} -> {to_id}")

    def incoming(self, item_id: str, kind: str) -> List[str]:
        """Ids of items with a ``kind`` edge pointing at ``item_id``."""
        self._check_kind(kind)
        with self._index_lock:
            return sorted(self._reverse[kind].get(item_id, ()))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def retire(self, item_id: str, superseded_by_id: str):
        """Mark an item as superseded. The record is kept.

        Raises:
            ItemNotFound: If either item does not exist
            InvariantViolation: If the item is already retired by another
                item or would supersede itself
        """
        if item_id == superseded_by_id:
            raise InvariantViolation(f"Item {item_id} cannot supersede itself")

        with self._locks.hold(item_id, superseded_by_id):
            item = self._require(item_id)
            self._require(superseded_by_id)

            if item.superseded_by == superseded_by_id:
                return
            if item.retired:
                raise InvariantViolation(
                    f"Item {item_id} is already superseded by {item.superseded_by}"
                )
            self._write(replace(item, superseded_by=superseded_by_id))

        logger.info(f"Retired item {item_id}, superseded by {superseded_by_id}")

    def record_validation(self, item_id: str, validated_at: datetime = None) -> ClassifiedItem:
        """Record an external human-validation event.

        An item waiting for validation is promoted to practice.

        Returns:
            The updated item

        Raises:
            InvariantViolation: If the item has been retired
        """
        with self._locks.hold(item_id):
            item = self._require_active(item_id)
            updated = replace(item, validated_at=validated_at or utcnow())
            if item.pending_validation:
                updated = replace(updated, tier=Tier.PRACTICE, pending_validation=False)
            stored, = self._write(updated)

        logger.info(f"Recorded validation for {item_id} at {to_iso(stored.validated_at)}")
        return stored

    def override_tier(self, item_id: str, tier: Tier, reason: str) -> ClassifiedItem:
        """Explicitly set an item's tier, downgrades included.

        Raises:
            InvariantViolation: If practice is requested for an unvalidated item
                or the item has been retired
        """
        with self._locks.hold(item_id):
            item = self._require_active(item_id)
            if tier is Tier.PRACTICE and item.validated_at is None:
                raise InvariantViolation(
                    f"Item {item_id} cannot be set to practice without human validation"
                )
            stored, = self._write(replace(item, tier=tier, pending_validation=False))

        logger.warning(
            f"Tier override for {item_id}: {item.tier.value} -> {tier.value} ({reason})"
        )
        return stored

    def record_duplicate(self, marker: DuplicateMarker):
        """Append a duplicate marker; markers are never ClassifiedItems."""
        key = f"{marker.document_id}@{to_iso(marker.detected_at)}"
        self._store.put(DUPLICATES, key, marker.to_dict())
        logger.info(
            f"Recorded duplicate {marker.document_id} of {marker.duplicate_of} "
            f"(similarity {marker.similarity:.3f})"
        )

    def duplicates(self) -> List[Dict]:
        """All duplicate markers."""
        return [record for _, record in self._store.scan(DUPLICATES)]
