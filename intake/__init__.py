"""Content Intake Pipeline.

Scores, deduplicates, classifies and files technical content:
- Weighted rubric scoring
- Near-duplicate detection
- Tier and taxonomy classification
- Registry with relationship tracking
"""

from .config import IntakeConfig, load_config
from .duplicate_detector import DuplicateDetector
from .models import (
    ClassifiedItem,
    CriterionScore,
    Evaluation,
    IntakeRequest,
    IntakeResult,
    SourceDocument,
    Status,
    Tier,
)
from .pipeline import IntakePipeline
from .registry import Registry
from .scorer import RubricConfig, RubricCriterion, RubricScorer
from .tier_classifier import TaxonomyHeuristics, TierClassifier, TierThresholds

__version__ = '1.0.0'

__all__ = [
    'ClassifiedItem',
    'CriterionScore',
    'DuplicateDetector',
    'Evaluation',
    'IntakeConfig',
    'IntakePipeline',
    'IntakeRequest',
    'IntakeResult',
    'Registry',
    'RubricConfig',
    'RubricCriterion',
    'RubricScorer',
    'SourceDocument',
    'Status',
    'TaxonomyHeuristics',
    'Tier',
    'TierClassifier',
    'TierThresholds',
    'load_config',
]
