"""Pluggable rubric criteria.

Each criterion is a pure function ``(text, metadata) -> int`` returning a
raw score in [1, 5]. Functions are registered by name so a rubric can be
assembled from configuration.
"""

import re
from typing import Callable, Dict, Optional, Sequence

ScoringFunction = Callable[[str, Dict], int]

CRITERIA: Dict[str, ScoringFunction] = {}


def register_criterion(name: str, function: ScoringFunction = None):
    """Register a scoring function under ``name``.

    Usable directly or as a decorator::

        @register_criterion('source-credibility')
        def source_credibility(text, metadata): ...
    """
    def decorator(fn: ScoringFunction) -> ScoringFunction:
        CRITERIA[name] = fn
        return fn

    if function is not None:
        return decorator(function)
    return decorator


def get_criterion(name: str) -> ScoringFunction:
    """Look up a registered scoring function.

    Raises:
        KeyError: If no function is registered under ``name``
    """
    return CRITERIA[name]


# Recognized technical authorities
AUTHORITY_DOMAINS = (
    'martinfowler.com',
    'thoughtworks.com',
    'developers.googleblog.com',
    'openai.com',
    'anthropic.com',
)

TECHNICAL_TERMS = (
    'ai', 'artificial intelligence', 'machine learning', 'development',
    'programming', 'software', 'architecture', 'pattern', 'framework',
    'tool', 'api', 'system',
)

MARKETING_PATTERN = re.compile(
    r'\b(buy now|sign up|contact sales|limited time|pricing|subscribe|purchase)\b',
    re.IGNORECASE
)

EVIDENCE_PATTERN = re.compile(
    r'(\b\d+(?:\.\d+)?\s?%|\bbenchmark\w*|\bstud(?:y|ies)\b|\bmeasured\b|'
    r'\bdataset\w*|\bexperiment\w*|https?://\S+|\[\d+\])',
    re.IGNORECASE
)

RISK_TERMS = (
    'risk', 'limitation', 'trade-off', 'tradeoff', 'security', 'failure',
    'pitfall', 'caveat', 'downside',
)

PRACTICE_TERMS = (
    'how to', 'step', 'example', 'implementation', 'in practice', 'we used',
    'production', 'deploy',
)

CONTRAST_TERMS = (
    'however', 'but', 'although', 'drawback', 'on the other hand',
    'alternatively', 'cons',
)

VERSION_PATTERN = re.compile(r'\bv?\d+\.\d+(?:\.\d+)?\b')
REPO_PATTERN = re.compile(r'\b(?:github|gitlab)\.com/\S+', re.IGNORECASE)
CODE_FENCE = '```'


def _bucket(count: int, edges: Sequence[int]) -> int:
    """Map a count to 1..5: one point plus one per edge reached."""
    return 1 + sum(1 for edge in edges if count >= edge)


def count_terms(text: str, terms: Sequence[str]) -> int:
    """Count how many distinct terms occur as whole words in text."""
    text_lower = text.lower()
    return sum(
        1 for term in terms
        if re.search(r'\b' + re.escape(term) + r'\b', text_lower)
    )


def _is_authority(domain: Optional[str]) -> bool:
    if not domain:
        return False
    domain = domain.lower()
    return any(domain == d or domain.endswith('.' + d) for d in AUTHORITY_DOMAINS)


@register_criterion('source-credibility')
def source_credibility(text: str, metadata: Dict) -> int:
    score = 4 if _is_authority(metadata.get('source_domain')) else 2
    if metadata.get('author_info'):
        score += 1
    return min(score, 5)


@register_criterion('technical-relevance')
def technical_relevance(text: str, metadata: Dict) -> int:
    coverage = count_terms(text, TECHNICAL_TERMS) / len(TECHNICAL_TERMS)
    if coverage == 0:
        return 1
    elif coverage < 0.2:
        return 2
    elif coverage < 0.4:
        return 3
    elif coverage < 0.6:
        return 4
    return 5


@register_criterion('technical-depth')
def technical_depth(text: str, metadata: Dict) -> int:
    """Longer write-ups with code score higher."""
    score = _bucket(len(text.split()), (300, 600, 1200, 2500))
    if CODE_FENCE in text:
        score += 1
    return min(score, 5)


@register_criterion('evidence-quality')
def evidence_quality(text: str, metadata: Dict) -> int:
    return _bucket(len(EVIDENCE_PATTERN.findall(text)), (1, 3, 6, 11))


@register_criterion('risk-assessment')
def risk_assessment(text: str, metadata: Dict) -> int:
    return _bucket(count_terms(text, RISK_TERMS), (1, 2, 3, 5))


@register_criterion('vendor-bias')
def vendor_bias(text: str, metadata: Dict) -> int:
    """5 means no marketing language; 1 means heavy promotion."""
    hits = len(MARKETING_PATTERN.findall(text))
    return 6 - _bucket(hits, (1, 2, 3, 5))


@register_criterion('practical-applicability')
def practical_applicability(text: str, metadata: Dict) -> int:
    return _bucket(count_terms(text, PRACTICE_TERMS), (1, 2, 3, 5))


@register_criterion('reproducibility')
def reproducibility(text: str, metadata: Dict) -> int:
    fences = text.count(CODE_FENCE) // 2
    points = 0
    if fences > 0:
        points += 1
    if fences > 2:
        points += 1
    if VERSION_PATTERN.search(text):
        points += 1
    if REPO_PATTERN.search(text):
        points += 1
    return 1 + points


@register_criterion('balance')
def balance(text: str, metadata: Dict) -> int:
    return _bucket(count_terms(text, CONTRAST_TERMS), (1, 2, 3, 5))


@register_criterion('recency')
def recency(text: str, metadata: Dict) -> int:
    """Age of the publication at capture time; unknown dates score neutral."""
    published = metadata.get('publication_date')
    captured = metadata.get('captured_at')
    if published is None or captured is None:
        return 3
    age_days = (captured - published).days
    if age_days < 0:
        return 3
    elif age_days <= 180:
        return 5
    elif age_days <= 365:
        return 4
    elif age_days <= 730:
        return 3
    elif age_days <= 1460:
        return 2
    return 1
