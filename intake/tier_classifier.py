"""Tier and Taxonomy Classification.

Maps an evaluation's total score to a maturity tier using ordered thresholds
and assigns taxonomy axis values with first-match heuristic rules.
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

from .exceptions import ConfigurationError, NoMatchingRule
from .models import AXES, Evaluation, Tier

logger = logging.getLogger(__name__)

RESERVED_CONDITIONS = ('total', 'topic', 'topics_any')


@dataclass(frozen=True)
class TierThresholds:
    """Lower bounds of the analysis and practice tiers."""
    analysis: float = 15
    practice: float = 23

    def validate(self, max_score: float):
        """Require 0 < analysis < practice < max_score.

        Raises:
            ConfigurationError: If the thresholds are not monotonic
        """
        if not 0 < self.analysis < self.practice < max_score:
            raise ConfigurationError(
                f"Tier thresholds must satisfy 0 < analysis ({self.analysis}) "
                f"< practice ({self.practice}) < max score ({max_score})"
            )


@dataclass(frozen=True)
class TaxonomyRule:
    """
    One heuristic rule for an axis.

    ``when`` maps criterion names to a raw-score range (``{'min': 1, 'max': 2}``
    or a bare integer for an exact match). The reserved keys ``total`` (a
    range over the total score), ``topic`` and ``topics_any`` match on topics
    the scorer detected. An empty condition always matches.
    """
    value: str
    when: Mapping = field(default_factory=dict)

    @staticmethod
    def _in_range(actual: Optional[float], expected) -> bool:
        if actual is None:
            return False
        if isinstance(expected, Mapping):
            low = expected.get('min')
            high = expected.get('max')
            if low is not None and actual < low:
                return False
            if high is not None and actual > high:
                return False
            return True
        return actual == expected

    def matches(self, evaluation: Evaluation) -> bool:
        for key, expected in self.when.items():
            if key == 'total':
                if not self._in_range(evaluation.total_score, expected):
                    return False
            elif key == 'topic':
                if expected not in evaluation.topics:
                    return False
            elif key == 'topics_any':
                if not set(expected) & set(evaluation.topics):
                    return False
            elif not self._in_range(evaluation.score_for(key), expected):
                return False
        return True


class TaxonomyHeuristics:
    """Vocabulary and ordered rules for every taxonomy axis."""

    def __init__(
        self,
        vocabulary: Mapping[str, Sequence[str]] = None,
        rules: Mapping[str, Sequence[TaxonomyRule]] = None
    ):
        """Initialize heuristics.

        Args:
            vocabulary: Allowed values per axis (open string sets)
            rules: Ordered rules per axis; the first matching rule wins
        """
        vocabulary = vocabulary or {}
        rules = rules or {}

        for axis in list(vocabulary) + list(rules):
            if axis not in AXES:
                raise ConfigurationError(f"Unknown taxonomy axis '{axis}'")

        self.vocabulary: Mapping[str, FrozenSet[str]] = MappingProxyType({
            axis: frozenset(vocabulary.get(axis) or ()) for axis in AXES
        })
        self.rules: Mapping[str, Tuple[TaxonomyRule, ...]] = MappingProxyType({
            axis: tuple(rules.get(axis) or ()) for axis in AXES
        })

        for axis, axis_rules in self.rules.items():
            allowed = self.vocabulary[axis]
            for rule in axis_rules:
                if allowed and rule.value not in allowed:
                    raise ConfigurationError(
                        f"Rule value '{rule.value}' for axis '{axis}' is not in the vocabulary"
                    )

    def validate_conditions(self, criterion_names: Sequence[str]):
        """Check that every rule refers to a known criterion.

        Raises:
            ConfigurationError: On a condition key that names no criterion
        """
        known = set(criterion_names) | set(RESERVED_CONDITIONS)
        for axis, axis_rules in self.rules.items():
            for rule in axis_rules:
                unknown = set(rule.when) - known
                if unknown:
                    raise ConfigurationError(
                        f"Rule for axis '{axis}' uses unknown conditions: {sorted(unknown)}"
                    )

    @classmethod
    def from_dict(cls, section: Dict) -> 'TaxonomyHeuristics':
        rules = {}
        for axis, entries in (section.get('rules') or {}).items():
            axis_rules = []
            for entry in entries or []:
                if not isinstance(entry, Mapping) or 'value' not in entry:
                    raise ConfigurationError(f"Rule for axis '{axis}' needs a 'value'")
                axis_rules.append(TaxonomyRule(
                    value=str(entry['value']),
                    when=MappingProxyType(dict(entry.get('when') or {})),
                ))
            rules[axis] = axis_rules
        return cls(vocabulary=section.get('vocabulary'), rules=rules)


@dataclass
class Classification:
    """Classifier output."""
    tier: Tier
    taxonomy: Dict[str, str]
    provisional: bool = False
    warnings: List[str] = field(default_factory=list)
    matched_rules: Dict[str, int] = field(default_factory=dict)


class TierClassifier:
    """Assign tiers and taxonomy axes to evaluations."""

    def __init__(
        self,
        thresholds: TierThresholds = None,
        heuristics: TaxonomyHeuristics = None,
        max_score: float = 25
    ):
        """Initialize the classifier.

        Args:
            thresholds: Tier thresholds (validated against max_score)
            heuristics: Default taxonomy heuristics
            max_score: Highest possible total score of the rubric
        """
        self.thresholds = thresholds or TierThresholds()
        self.thresholds.validate(max_score)
        self.heuristics = heuristics or TaxonomyHeuristics()
        self.max_score = max_score

    def score_to_tier(self, score: float) -> Tier:
        """Convert a total score to a tier.

        Args:
            score: Total rubric score

        Returns:
            Tier
        """
        if score >= self.thresholds.practice:
            return Tier.PRACTICE
        elif score >= self.thresholds.analysis:
            return Tier.ANALYSIS
        else:
            return Tier.RESEARCH

    def assign_axis(
        self,
        axis: str,
        evaluation: Evaluation,
        heuristics: TaxonomyHeuristics = None
    ) -> Tuple[str, int]:
        """Evaluate an axis' rules in order; the first match wins.

        Returns:
            Tuple of (value, rule_index)

        Raises:
            NoMatchingRule: If no rule applies
        """
        heuristics = heuristics or self.heuristics
        for index, rule in enumerate(heuristics.rules.get(axis, ())):
            if rule.matches(evaluation):
                return rule.value, index
        raise NoMatchingRule(axis)

    def classify(
        self,
        evaluation: Evaluation,
        heuristics: TaxonomyHeuristics = None
    ) -> Classification:
        """Classify an evaluation.

        A practice tier is provisional: the orchestrator still has to confirm
        human validation before the registry accepts it.

        Args:
            evaluation: Scorer output
            heuristics: Optional heuristics override

        Returns:
            Classification
        """
        tier = self.score_to_tier(evaluation.total_score)
        taxonomy = {}
        warnings = []
        matched = {}

        for axis in AXES:
            try:
                value, index = self.assign_axis(axis, evaluation, heuristics)
            except NoMatchingRule as e:
                logger.warning(f"{e} for document {evaluation.document_id}")
                warnings.append(f"{e.reason}: {axis}")
                continue
            taxonomy[axis] = value
            matched[axis] = index

        return Classification(
            tier=tier,
            taxonomy=taxonomy,
            provisional=tier is Tier.PRACTICE,
            warnings=warnings,
            matched_rules=matched,
        )
