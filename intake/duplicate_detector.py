"""Near-Duplicate Detection using shingle fingerprints.

Identifies content already filed in the registry before it is classified.
"""

import hashlib
from typing import TYPE_CHECKING, FrozenSet, Iterable, List, Optional, Tuple

from .models import ClassifiedItem, SourceDocument, normalize_text

if TYPE_CHECKING:
    from .registry import Registry


class DuplicateDetector:
    """Detect near-duplicate documents with Jaccard similarity over word shingles."""

    def __init__(self, similarity_threshold: float = 0.85, shingle_size: int = 5):
        """Initialize duplicate detector.

        Args:
            similarity_threshold: Minimum Jaccard similarity for a duplicate (0-1)
            shingle_size: Number of words per shingle
        """
        self.similarity_threshold = similarity_threshold
        self.shingle_size = shingle_size

    def tokenize(self, text: str) -> List[str]:
        """Normalize text and split it into words.

        Args:
            text: Input text

        Returns:
            Lowercase words with punctuation removed
        """
        if not isinstance(text, str):
            return []
        return normalize_text(text).split()

    @staticmethod
    def _hash_shingle(words: Tuple[str, ...]) -> int:
        digest = hashlib.blake2b(' '.join(words).encode('utf-8'), digest_size=8).digest()
        return int.from_bytes(digest, 'big', signed=True)

    def fingerprint(self, text: str) -> FrozenSet[int]:
        """Compute the shingle fingerprint of a text.

        Texts shorter than one shingle form a single shingle.

        Args:
            text: Input text

        Returns:
            Frozen set of 64-bit shingle hashes
        """
        words = self.tokenize(text)
        if not words:
            return frozenset()
        if len(words) < self.shingle_size:
            return frozenset({self._hash_shingle(tuple(words))})

        return frozenset(
            self._hash_shingle(tuple(words[i:i + self.shingle_size]))
            for i in range(len(words) - self.shingle_size + 1)
        )

    @staticmethod
    def jaccard_similarity(fp1: FrozenSet[int], fp2: FrozenSet[int]) -> float:
        """Calculate Jaccard similarity between two fingerprints.

        Returns:
            |intersection| / |union| (0-1)
        """
        if not fp1 or not fp2:
            return 0.0
        union = len(fp1 | fp2)
        return len(fp1 & fp2) / union

    def text_similarity(self, text1: str, text2: str) -> float:
        """Calculate shingle similarity between two texts."""
        return self.jaccard_similarity(self.fingerprint(text1), self.fingerprint(text2))

    def rank_candidates(
        self,
        fingerprint: FrozenSet[int],
        candidates: Iterable[Tuple[str, FrozenSet[int], object]]
    ) -> List[Tuple[str, float]]:
        """Score stored fingerprints against a fingerprint.

        Args:
            fingerprint: Fingerprint of the incoming document
            candidates: (item_id, fingerprint, captured_at) tuples

        Returns:
            (item_id, similarity) pairs at or above threshold, best first.
            Ties go to the most recently captured item, then to the lower id.
        """
        matches = []
        for item_id, stored, captured_at in candidates:
            similarity = self.jaccard_similarity(fingerprint, stored)
            if similarity >= self.similarity_threshold:
                stamp = captured_at.timestamp() if captured_at is not None else float('-inf')
                matches.append((item_id, similarity, stamp))

        matches.sort(key=lambda x: (-x[1], -x[2], x[0]))
        return [(item_id, similarity) for item_id, similarity, _ in matches]

    def best_match(
        self,
        document: SourceDocument,
        registry: 'Registry'
    ) -> Optional[Tuple[str, float]]:
        """Find the id and similarity of the closest filed item above threshold."""
        ranked = self.rank_candidates(
            self.fingerprint(document.raw_text),
            registry.fingerprints()
        )
        return ranked[0] if ranked else None

    def find_near_duplicate(
        self,
        document: SourceDocument,
        registry: 'Registry'
    ) -> Optional[ClassifiedItem]:
        """Find the filed item this document duplicates, if any.

        Args:
            document: Incoming document
            registry: Registry of filed items

        Returns:
            The highest-similarity ClassifiedItem above threshold, or None
        """
        match = self.best_match(document, registry)
        if match is None:
            return None
        return registry.get(match[0])
