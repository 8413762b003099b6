"""Configuration loading and startup validation.

Configuration is YAML, deep-merged over DEFAULT_CONFIG. Everything that
can make the pipeline misbehave (weights, thresholds, rules, vocabulary)
is checked once here, at startup.
"""

import copy
from dataclasses import dataclass, field
from typing import Dict, Optional

import yaml

from .exceptions import ConfigurationError
from .scorer import RubricConfig
from .tier_classifier import TaxonomyHeuristics, TierThresholds


REFERENCE_CRITERIA = (
    'source-credibility',
    'technical-relevance',
    'technical-depth',
    'evidence-quality',
    'risk-assessment',
    'vendor-bias',
    'practical-applicability',
    'reproducibility',
    'balance',
    'recency',
)

DEFAULT_CONFIG = {
    'rubric': {
        'total_weight': 25,
        'min_content_length': 1000,
        'criteria': [{'name': name, 'weight': 2.5} for name in REFERENCE_CRITERIA],
        'topics': {
            'ai-vendor': ['google', 'gemini', 'openai', 'anthropic', 'claude'],
            'architecture': ['framework', 'pattern', 'architecture'],
            'security': ['security', 'vulnerability', 'prompt injection', 'threat model'],
            'testing': ['testing', 'test suite', 'unit test', 'tdd'],
            'enterprise': ['enterprise', 'compliance', 'governance'],
            'startup': ['startup', 'mvp'],
            'individual': ['solo developer', 'side project', 'personal project'],
        },
    },
    'tiers': {
        'analysis': 15,
        'practice': 23,
    },
    'duplicates': {
        'threshold': 0.85,
        'shingle_size': 5,
    },
    'taxonomy': {
        'vocabulary': {
            'domain': ['ai-tooling', 'architecture', 'security', 'testing', 'general-engineering'],
            'riskProfile': ['low', 'medium', 'high'],
            'context': ['enterprise', 'startup', 'individual', 'none'],
            'maturity': ['experimental', 'emerging', 'established'],
        },
        'rules': {
            'domain': [
                {'when': {'topic': 'ai-vendor'}, 'value': 'ai-tooling'},
                {'when': {'topic': 'security'}, 'value': 'security'},
                {'when': {'topic': 'architecture'}, 'value': 'architecture'},
                {'when': {'topic': 'testing'}, 'value': 'testing'},
                {'when': {}, 'value': 'general-engineering'},
            ],
            'riskProfile': [
                {'when': {'vendor-bias': {'max': 2}}, 'value': 'high'},
                {'when': {'risk-assessment': {'max': 1}}, 'value': 'high'},
                {'when': {'risk-assessment': {'min': 4}, 'evidence-quality': {'min': 3}},
                 'value': 'low'},
                {'when': {}, 'value': 'medium'},
            ],
            'context': [
                {'when': {'topic': 'enterprise'}, 'value': 'enterprise'},
                {'when': {'topic': 'startup'}, 'value': 'startup'},
                {'when': {'topic': 'individual'}, 'value': 'individual'},
            ],
            'maturity': [
                {'when': {'total': {'min': 20}, 'reproducibility': {'min': 4}},
                 'value': 'established'},
                {'when': {'total': {'min': 15}}, 'value': 'emerging'},
                {'when': {}, 'value': 'experimental'},
            ],
        },
    },
    'extractor': {
        'mode': 'jina',
        'endpoint': None,
        'timeout': 30,
        'api_key_env': 'QED_JINA_API_KEY',
    },
    'registry': {
        'path': None,
    },
    'strict': False,
    'workers': 4,
    'output': {
        'log_level': 'INFO',
        'results': None,
        'summary_csv': None,
    },
}


def deep_merge(base: Dict, override: Dict) -> Dict:
    """Merge ``override`` into a copy of ``base``; lists and scalars replace."""
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


@dataclass
class IntakeConfig:
    """Validated configuration for one pipeline."""
    rubric: RubricConfig
    thresholds: TierThresholds
    heuristics: TaxonomyHeuristics
    duplicate_threshold: float = 0.85
    shingle_size: int = 5
    extractor: Dict = field(default_factory=dict)
    registry_path: Optional[str] = None
    strict: bool = False
    workers: int = 4
    output: Dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, config: Dict = None) -> 'IntakeConfig':
        """Build and validate a configuration.

        Args:
            config: Overrides merged over DEFAULT_CONFIG

        Returns:
            IntakeConfig

        Raises:
            ConfigurationError: If any section fails validation
        """
        merged = deep_merge(DEFAULT_CONFIG, config or {})

        rubric = RubricConfig.from_dict(merged['rubric'])

        tiers = merged['tiers']
        try:
            thresholds = TierThresholds(
                analysis=float(tiers['analysis']),
                practice=float(tiers['practice']),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid tier thresholds: {tiers}") from e
        thresholds.validate(rubric.max_score)

        heuristics = TaxonomyHeuristics.from_dict(merged['taxonomy'])
        heuristics.validate_conditions([c.name for c in rubric.criteria])

        duplicates = merged['duplicates']
        threshold = float(duplicates.get('threshold', 0.85))
        if not 0 < threshold <= 1:
            raise ConfigurationError(f"Duplicate threshold must be in (0, 1], got {threshold}")
        shingle_size = int(duplicates.get('shingle_size', 5))
        if shingle_size < 1:
            raise ConfigurationError(f"Shingle size must be positive, got {shingle_size}")

        extractor = merged['extractor']
        if extractor.get('mode') not in ('jina', 'proxy'):
            raise ConfigurationError(f"Unknown extractor mode '{extractor.get('mode')}'")
        if extractor.get('mode') == 'proxy' and not extractor.get('endpoint'):
            raise ConfigurationError("Extractor mode 'proxy' requires an endpoint")

        workers = int(merged.get('workers', 4))
        if workers < 1:
            raise ConfigurationError(f"workers must be at least 1, got {workers}")

        return cls(
            rubric=rubric,
            thresholds=thresholds,
            heuristics=heuristics,
            duplicate_threshold=threshold,
            shingle_size=shingle_size,
            extractor=extractor,
            registry_path=(merged.get('registry') or {}).get('path'),
            strict=bool(merged.get('strict', False)),
            workers=workers,
            output=merged.get('output') or {},
        )


def load_config(config_path: str = None) -> IntakeConfig:
    """Load configuration from a YAML file.

    Args:
        config_path: Path to YAML file; defaults only when omitted

    Returns:
        Validated IntakeConfig
    """
    if not config_path:
        return IntakeConfig.from_dict({})

    try:
        with open(config_path, 'r') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read configuration {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration {config_path} must be a mapping")

    return IntakeConfig.from_dict(data)
