"""Rubric Scoring for intake documents.

Applies a fixed set of weighted criteria to extracted text and metadata,
producing per-criterion sub-scores and a deterministic total.
"""

import math
import re
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Sequence, Tuple

import numpy as np

from .criteria import CRITERIA, ScoringFunction
from .exceptions import ConfigurationError, InsufficientContent, RubricMismatch
from .models import CriterionScore, Evaluation, SourceDocument

MAX_RAW_SCORE = 5


@dataclass(frozen=True)
class RubricCriterion:
    """A named, weighted criterion bound to its scoring function."""
    name: str
    weight: float
    function: ScoringFunction


@dataclass
class RubricConfig:
    """Rubric definition: criteria, weight total and input constraints."""
    criteria: Sequence[RubricCriterion]
    total_weight: float = 25
    min_content_length: int = 1000
    topics: Mapping[str, Sequence[str]] = field(default_factory=dict)

    def __post_init__(self):
        self.criteria = tuple(self.criteria)
        self.validate()

    @property
    def max_score(self) -> float:
        return float(sum(c.weight for c in self.criteria))

    def validate(self):
        """Check weights and criterion names.

        Raises:
            ConfigurationError: If the rubric is unusable
        """
        if not self.criteria:
            raise ConfigurationError("Rubric has no criteria")

        names = [c.name for c in self.criteria]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Duplicate rubric criteria: {names}")

        for c in self.criteria:
            if not c.weight > 0:
                raise ConfigurationError(
                    f"Criterion '{c.name}' has non-positive weight {c.weight}"
                )
            if not callable(c.function):
                raise ConfigurationError(f"Criterion '{c.name}' has no scoring function")

        if not math.isclose(self.max_score, self.total_weight, rel_tol=1e-9):
            raise ConfigurationError(
                f"Criterion weights sum to {self.max_score}, expected {self.total_weight}"
            )

        if self.min_content_length < 0:
            raise ConfigurationError("min_content_length must not be negative")

    @classmethod
    def from_dict(
        cls,
        section: Dict,
        registry: Mapping[str, ScoringFunction] = None
    ) -> 'RubricConfig':
        """Build a rubric from a configuration section.

        Args:
            section: Mapping with 'criteria' (list of name/weight), 'total_weight',
                     'min_content_length' and optional 'topics'
            registry: Criterion functions by name (defaults to the global registry)

        Returns:
            RubricConfig
        """
        registry = CRITERIA if registry is None else registry
        criteria = []
        for entry in section.get('criteria') or []:
            name = entry.get('name')
            if name not in registry:
                raise ConfigurationError(f"Unknown rubric criterion '{name}'")
            try:
                weight = float(entry.get('weight'))
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"Invalid weight for criterion '{name}'") from e
            criteria.append(RubricCriterion(name, weight, registry[name]))

        return cls(
            criteria=criteria,
            total_weight=float(section.get('total_weight', 25)),
            min_content_length=int(section.get('min_content_length', 1000)),
            topics={k: tuple(v) for k, v in (section.get('topics') or {}).items()},
        )


class RubricScorer:
    """Score documents against a weighted rubric."""

    def __init__(self, rubric: RubricConfig):
        """Initialize the scorer.

        Args:
            rubric: Default rubric used when evaluate() is not given one
        """
        self.rubric = rubric
        self._topic_patterns = {}

    def _compile_topic(self, keywords: Sequence[str]):
        key = tuple(keywords)
        if key not in self._topic_patterns:
            alternation = '|'.join(re.escape(k.lower()) for k in keywords)
            self._topic_patterns[key] = re.compile(r'\b(?:' + alternation + r')\b')
        return self._topic_patterns[key]

    def detect_topics(self, text: str, rubric: RubricConfig = None) -> Tuple[str, ...]:
        """Find topic labels whose keywords appear in the text.

        Args:
            text: Document text
            rubric: Rubric carrying the topic keyword map

        Returns:
            Sorted tuple of matched topic labels
        """
        rubric = rubric or self.rubric
        text_lower = text.lower()
        matched = [
            topic for topic, keywords in rubric.topics.items()
            if keywords and self._compile_topic(keywords).search(text_lower)
        ]
        return tuple(sorted(matched))

    def score_criterion(
        self,
        criterion: RubricCriterion,
        text: str,
        metadata: Dict
    ) -> CriterionScore:
        """Run one scoring function and check its result.

        Raises:
            RubricMismatch: If the function returns anything but an int in [1, 5]
        """
        value = criterion.function(text, metadata)
        if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
            raise RubricMismatch(criterion.name, value)
        if not 1 <= value <= MAX_RAW_SCORE:
            raise RubricMismatch(criterion.name, value)
        return CriterionScore(
            name=criterion.name,
            weight=criterion.weight,
            raw_score=int(value),
        )

    def aggregate(self, scores: Sequence[CriterionScore]) -> float:
        """Sum weighted contributions: raw / 5 * weight.

        Args:
            scores: Criterion scores

        Returns:
            Total score, rounded to 6 decimals so repeated runs agree
        """
        if not scores:
            return 0.0
        raw = np.array([s.raw_score for s in scores], dtype=float)
        weights = np.array([s.weight for s in scores], dtype=float)
        total = np.dot(raw, weights) / MAX_RAW_SCORE
        return round(float(total), 6)

    def evaluate(self, document: SourceDocument, rubric: RubricConfig = None) -> Evaluation:
        """Evaluate a document.

        Args:
            document: Source document
            rubric: Rubric to apply (defaults to the scorer's rubric)

        Returns:
            Evaluation with ordered criterion scores and total

        Raises:
            InsufficientContent: If the text is shorter than the rubric minimum
            RubricMismatch: If a scoring function misbehaves
        """
        rubric = rubric or self.rubric
        text = document.raw_text or ''
        if len(text) < rubric.min_content_length:
            raise InsufficientContent(len(text), rubric.min_content_length)

        metadata = document.metadata
        scores = tuple(
            self.score_criterion(criterion, text, metadata)
            for criterion in rubric.criteria
        )

        return Evaluation(
            document_id=document.id,
            criteria=scores,
            total_score=self.aggregate(scores),
            topics=self.detect_topics(text, rubric),
        )

    def score_batch(
        self,
        documents: List[SourceDocument],
        rubric: RubricConfig = None
    ) -> List[Tuple[str, Evaluation]]:
        """Evaluate several documents, highest total first.

        Args:
            documents: Source documents (all must meet the length minimum)
            rubric: Optional rubric override

        Returns:
            List of (document_id, Evaluation) tuples sorted by total score
        """
        results = [(doc.id, self.evaluate(doc, rubric)) for doc in documents]
        results.sort(key=lambda x: (-x[1].total_score, x[0]))
        return results
