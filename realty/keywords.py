"""
Keyword relevance classifier for listing text.

Matching runs in three tiers and stops at the first tier that finds anything:

1. exact   - whole-word regex match of every keyword
2. loose   - substring match for multi-word keywords, token equality otherwise
3. fuzzy   - best keyword per token (tokens longer than 4 chars) by
             normalized edit-distance similarity
"""
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from rapidfuzz import fuzz, process

from .utils import normalize_text, unique


TOKEN_RE = re.compile(r"[\w'-]+")
FUZZY_MIN_TOKEN_LEN = 5
DEFAULT_FUZZY_CUTOFF = 80.0


@dataclass(frozen=True)
class KeywordMatch:
    contains: bool
    matches: Tuple[str, ...] = ()


NO_MATCH = KeywordMatch(False, ())


def tokenize(text: str) -> List[str]:
    """Split normalized text into word tokens, trimming stray apostrophes and hyphens."""
    tokens = []
    for raw in TOKEN_RE.findall(text):
        tok = raw.strip("'-")
        if tok:
            tokens.append(tok)
    return tokens


class KeywordClassifier:
    """Precomputed index over a keyword set, queried once per listing."""

    def __init__(self, keywords: Iterable[str], fuzzy_cutoff: float = DEFAULT_FUZZY_CUTOFF):
        self.keywords: Tuple[str, ...] = tuple(
            unique(normalize_text(k).strip() for k in keywords if k and k.strip())
        )
        self.fuzzy_cutoff = fuzzy_cutoff
        self._patterns = [
            (kw, re.compile(rf"\b{re.escape(kw)}\b", re.IGNORECASE))
            for kw in self.keywords
        ]
        self._phrases = frozenset(kw for kw in self.keywords if " " in kw)

    def classify(self, text: Optional[str]) -> KeywordMatch:
        if not text or not self.keywords:
            return NO_MATCH

        normalized = normalize_text(text)
        matches = self._exact(normalized)
        if not matches:
            tokens = tokenize(normalized)
            matches = self._loose(normalized, tokens)
            if not matches and tokens:
                matches = self._fuzzy(tokens)

        matches = unique(matches)
        return KeywordMatch(bool(matches), tuple(matches))

    __call__ = classify

    def _exact(self, normalized: str) -> List[str]:
        return [kw for kw, pattern in self._patterns if pattern.search(normalized)]

    def _loose(self, normalized: str, tokens: List[str]) -> List[str]:
        token_set = set(tokens)
        found = []
        for kw in self.keywords:
            if kw in self._phrases:
                if kw in normalized:
                    found.append(kw)
            elif kw in token_set:
                found.append(kw)
        return found

    def _fuzzy(self, tokens: List[str]) -> List[str]:
        found = []
        for tok in tokens:
            if len(tok) < FUZZY_MIN_TOKEN_LEN:
                continue
            best = process.extractOne(
                tok,
                self.keywords,
                scorer=fuzz.ratio,
                score_cutoff=self.fuzzy_cutoff,
            )
            if best:
                found.append(best[0])
        return found
