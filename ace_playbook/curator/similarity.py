# ace_playbook/curator/similarity.py

from itertools import combinations

from datasketch import MinHash  # type: ignore

from ace_playbook.core.schema import Bullet
from ace_playbook.utils import normalize_words


class SimilarityMatcher:
    """
    Lexical near-duplicate detection between playbook bullets.

    Uses MinHash-estimated Jaccard similarity over normalized word tokens. Two bullets
    are near-duplicates when the estimate is at or above ``threshold``.
    """

    def __init__(self, threshold: float = 0.85, num_perm: int = 128):
        self.threshold = threshold
        self.num_perm = num_perm

    def find_potential_duplicates(
        self, bullets: list[Bullet]
    ) -> list[tuple[Bullet, Bullet, float]]:
        """Pairs of active bullets in the same section whose similarity meets the threshold."""
        signatures = {
            b.id: self._generate_minhash(b.content)
            for b in bullets
            if b.active and normalize_words(b.content)
        }
        candidates = [b for b in bullets if b.id in signatures]

        pairs = []
        for a, b in combinations(candidates, 2):
            if a.section != b.section:
                continue
            score = float(signatures[a.id].jaccard(signatures[b.id]))
            if score >= self.threshold:
                pairs.append((a, b, score))
        return pairs

    def _generate_minhash(self, text: str) -> MinHash:
        """Generate MinHash signature for text."""
        m = MinHash(num_perm=self.num_perm)
        for word in set(normalize_words(text)):
            m.update(word.encode("utf8"))
        return m
