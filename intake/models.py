"""Data model for content intake.

Source documents, rubric evaluations, classified registry items and the
request/result shapes of the pipeline invocation surface.
"""

import hashlib
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple
from urllib.parse import urlparse, urlunparse

from .exceptions import InvalidRequest


AXES = ('domain', 'riskProfile', 'context', 'maturity')
REQUIRED_AXES = ('domain', 'riskProfile')

RELATIONSHIP_KINDS = ('requires', 'enables', 'conflicts', 'alternatives')
SYMMETRIC_KINDS = frozenset({'conflicts', 'alternatives'})

PRIORITIES = ('high', 'medium', 'low')


class Tier(Enum):
    """Maturity tiers, ordered research < analysis < practice."""
    RESEARCH = 'research'
    ANALYSIS = 'analysis'
    PRACTICE = 'practice'

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]

    def __lt__(self, other):
        if not isinstance(other, Tier):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, Tier):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, Tier):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, Tier):
            return NotImplemented
        return self.rank >= other.rank


_TIER_RANK = {Tier.RESEARCH: 0, Tier.ANALYSIS: 1, Tier.PRACTICE: 2}


class Status(Enum):
    """Outcome of one pipeline invocation."""
    FILED = 'filed'
    DUPLICATE = 'duplicate'
    REJECTED = 'rejected'


class PipelineState(Enum):
    """States of the per-document intake state machine."""
    EXTRACTING = 'extracting'
    SCORING = 'scoring'
    DEDUPLICATING = 'deduplicating'
    CLASSIFYING = 'classifying'
    FILING = 'filing'
    DONE = 'done'
    REJECTED = 'rejected'


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def from_iso(value) -> Optional[datetime]:
    """Parse an ISO-8601 string (or pass through a datetime); naive values are UTC."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def canonicalize_url(url: str) -> str:
    """Lowercase scheme and host, drop fragment and trailing slash."""
    parts = urlparse(url.strip())
    path = parts.path.rstrip('/') or ''
    return urlunparse((
        parts.scheme.lower(),
        parts.netloc.lower(),
        path,
        parts.params,
        parts.query,
        '',
    ))


def normalize_text(text: str) -> str:
    """Lowercase, strip punctuation and collapse whitespace."""
    text = re.sub(r'[^\w\s]', ' ', text.lower())
    return ' '.join(text.split())


def document_id(url: Optional[str] = None, raw_text: Optional[str] = None) -> str:
    """Content-derived identifier: hash of the canonical URL, else of the text."""
    if url:
        basis = 'url:' + canonicalize_url(url)
    else:
        basis = 'text:' + normalize_text(raw_text or '')
    return hashlib.sha256(basis.encode('utf-8')).hexdigest()[:32]


def extract_title(raw_text: str, url: Optional[str] = None) -> str:
    """First level-one markdown heading in the first ten lines, else the URL tail."""
    for line in raw_text.splitlines()[:10]:
        match = re.match(r'^#(?!#)\s*(.+)$', line.strip())
        if match:
            return match.group(1).strip()
    if url:
        tail = urlparse(url).path.rstrip('/').rsplit('/', 1)[-1]
        return tail or urlparse(url).netloc
    return ''


@dataclass(frozen=True)
class SourceDocument:
    """Raw input unit; immutable once captured."""
    id: str
    raw_text: str
    captured_at: datetime
    url: Optional[str] = None
    author_info: Optional[str] = None
    publication_date: Optional[datetime] = None
    title: str = ''
    source_domain: Optional[str] = None
    priority: str = 'medium'
    content_hash: str = ''

    @classmethod
    def capture(
        cls,
        raw_text: str,
        url: str = None,
        author_info: str = None,
        publication_date=None,
        captured_at: datetime = None,
        priority: str = 'medium'
    ) -> 'SourceDocument':
        """Create a document at extraction time, deriving id and provenance fields.

        Args:
            raw_text: Extracted text
            url: Optional origin locator
            author_info: Optional, unverified author description
            publication_date: Optional datetime or ISO string
            captured_at: Extraction time (defaults to now, UTC)
            priority: Intake priority passthrough (high/medium/low)

        Returns:
            SourceDocument
        """
        return cls(
            id=document_id(url, raw_text),
            raw_text=raw_text,
            captured_at=captured_at or utcnow(),
            url=url,
            author_info=author_info,
            publication_date=from_iso(publication_date),
            title=extract_title(raw_text, url),
            source_domain=urlparse(url).netloc.lower() if url else None,
            priority=priority,
            content_hash=hashlib.md5(raw_text.encode('utf-8')).hexdigest(),
        )

    @property
    def metadata(self) -> Dict:
        """Metadata handed to criterion scoring functions."""
        return {
            'url': self.url,
            'source_domain': self.source_domain,
            'author_info': self.author_info,
            'publication_date': self.publication_date,
            'captured_at': self.captured_at,
            'title': self.title,
        }


@dataclass(frozen=True)
class CriterionScore:
    """One weighted rubric dimension."""
    name: str
    weight: float
    raw_score: int
    rationale: str = ''

    @property
    def contribution(self) -> float:
        return self.raw_score / 5 * self.weight

    def to_dict(self) -> Dict:
        return {
            'name': self.name,
            'weight': self.weight,
            'rawScore': self.raw_score,
            'rationale': self.rationale,
        }


@dataclass(frozen=True)
class Evaluation:
    """Scorer output for one document."""
    document_id: str
    criteria: Tuple[CriterionScore, ...]
    total_score: float
    topics: Tuple[str, ...] = ()

    def score_for(self, name: str) -> Optional[int]:
        for criterion in self.criteria:
            if criterion.name == name:
                return criterion.raw_score
        return None

    @property
    def max_score(self) -> float:
        return sum(c.weight for c in self.criteria)

    def to_dict(self) -> Dict:
        return {
            'documentId': self.document_id,
            'criteria': [c.to_dict() for c in self.criteria],
            'totalScore': self.total_score,
            'topics': list(self.topics),
        }


def _empty_relationships() -> Dict[str, FrozenSet[str]]:
    return {kind: frozenset() for kind in RELATIONSHIP_KINDS}


@dataclass
class ClassifiedItem:
    """Filed, queryable registry unit."""
    id: str
    tier: Tier
    taxonomy: Dict[str, str] = field(default_factory=dict)
    relationships: Dict[str, FrozenSet[str]] = field(default_factory=_empty_relationships)
    validated_at: Optional[datetime] = None
    superseded_by: Optional[str] = None
    pending_validation: bool = False
    title: str = ''
    url: Optional[str] = None
    source_domain: Optional[str] = None
    total_score: Optional[float] = None
    captured_at: Optional[datetime] = None
    filed_at: Optional[datetime] = None
    fingerprint: FrozenSet[int] = frozenset()
    evaluation: Optional[Dict] = None
    version: int = 0

    @property
    def retired(self) -> bool:
        return self.superseded_by is not None

    def related(self, kind: str) -> FrozenSet[str]:
        return self.relationships.get(kind, frozenset())

    def to_dict(self) -> Dict:
        """Serialize to the durable record schema."""
        return {
            'id': self.id,
            'tier': self.tier.value,
            'taxonomy': {axis: self.taxonomy[axis] for axis in AXES if self.taxonomy.get(axis)},
            'relationships': {
                kind: sorted(self.relationships.get(kind, ())) for kind in RELATIONSHIP_KINDS
            },
            'validatedAt': to_iso(self.validated_at),
            'supersededBy': self.superseded_by,
            'pendingValidation': self.pending_validation,
            'title': self.title,
            'url': self.url,
            'sourceDomain': self.source_domain,
            'totalScore': self.total_score,
            'capturedAt': to_iso(self.captured_at),
            'filedAt': to_iso(self.filed_at),
            'fingerprint': sorted(self.fingerprint),
            'evaluation': self.evaluation,
            'version': self.version,
        }

    @classmethod
    def from_dict(cls, record: Dict) -> 'ClassifiedItem':
        relationships = record.get('relationships') or {}
        return cls(
            id=record['id'],
            tier=Tier(record['tier']),
            taxonomy=dict(record.get('taxonomy') or {}),
            relationships={
                kind: frozenset(relationships.get(kind, ())) for kind in RELATIONSHIP_KINDS
            },
            validated_at=from_iso(record.get('validatedAt')),
            superseded_by=record.get('supersededBy'),
            pending_validation=bool(record.get('pendingValidation', False)),
            title=record.get('title', ''),
            url=record.get('url'),
            source_domain=record.get('sourceDomain'),
            total_score=record.get('totalScore'),
            captured_at=from_iso(record.get('capturedAt')),
            filed_at=from_iso(record.get('filedAt')),
            fingerprint=frozenset(record.get('fingerprint') or ()),
            evaluation=record.get('evaluation'),
            version=int(record.get('version', 0)),
        )


@dataclass(frozen=True)
class DuplicateMarker:
    """Record that a submission was a near-duplicate of an existing item."""
    document_id: str
    duplicate_of: str
    similarity: float
    detected_at: datetime
    url: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            'documentId': self.document_id,
            'duplicateOf': self.duplicate_of,
            'similarity': self.similarity,
            'detectedAt': to_iso(self.detected_at),
            'url': self.url,
        }


@dataclass
class IntakeRequest:
    """
    One pipeline invocation.

    Exactly one of ``url`` and ``raw_text`` must be provided. ``validated_at``
    is the human-validation signal required before an item can be filed in
    the practice tier. ``strict`` overrides the pipeline default when set.
    """
    url: Optional[str] = None
    raw_text: Optional[str] = None
    author_info: Optional[str] = None
    publication_date: Optional[datetime] = None
    validated_at: Optional[datetime] = None
    priority: str = 'medium'
    strict: Optional[bool] = None

    def __post_init__(self):
        if bool(self.url) == bool(self.raw_text):
            raise InvalidRequest("Exactly one of 'url' and 'rawText' must be provided")
        if self.priority not in PRIORITIES:
            raise InvalidRequest(
                f"Unknown priority '{self.priority}'; expected one of {', '.join(PRIORITIES)}"
            )
        try:
            self.publication_date = from_iso(self.publication_date)
            self.validated_at = from_iso(self.validated_at)
        except ValueError as e:
            raise InvalidRequest(f"Invalid timestamp: {e}") from e

    @classmethod
    def from_dict(cls, payload: Dict) -> 'IntakeRequest':
        """Build a request from the JSON invocation shape."""
        if not isinstance(payload, dict):
            raise InvalidRequest("Request must be a JSON object")
        metadata = payload.get('metadata') or {}
        if not isinstance(metadata, dict):
            raise InvalidRequest("Request 'metadata' must be a JSON object")
        return cls(
            url=payload.get('url'),
            raw_text=payload.get('rawText'),
            author_info=metadata.get('authorInfo'),
            publication_date=metadata.get('publicationDate'),
            validated_at=payload.get('validatedAt'),
            priority=payload.get('priority', 'medium'),
            strict=payload.get('strict'),
        )


@dataclass
class IntakeResult:
    """Outcome reported to the caller for one invocation."""
    status: Status
    item_id: Optional[str] = None
    tier: Optional[Tier] = None
    reason: Optional[str] = None
    message: Optional[str] = None
    pending_validation: bool = False
    warnings: List[str] = field(default_factory=list)
    state: PipelineState = PipelineState.DONE

    def to_dict(self) -> Dict:
        result = {'status': self.status.value}
        if self.item_id:
            result['itemId'] = self.item_id
        if self.tier:
            result['tier'] = self.tier.value
        if self.reason:
            result['reason'] = self.reason
        if self.message:
            result['message'] = self.message
        if self.pending_validation:
            result['pendingValidation'] = True
        if self.warnings:
            result['warnings'] = list(self.warnings)
        return result
