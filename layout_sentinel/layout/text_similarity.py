"""Text similarity metrics used for element correlation and content checks.

Four complementary metrics are combined into one score:
- Levenshtein: edit distance normalised by the longer string
- Jaro-Winkler: transposition-tolerant, rewards common prefixes
- Dice: character bigram overlap
- Token Jaccard: whitespace token overlap, insensitive to word order

Empty inputs follow one convention throughout: two empty strings are
identical (1.0), one empty string against a non-empty one scores 0.0.
"""

import re
from dataclasses import dataclass


@dataclass(frozen=True)
class TextSimilarityWeights:
    """Weights for combining the individual metrics."""

    levenshtein: float = 0.3
    jaro_winkler: float = 0.3
    dice: float = 0.2
    token_jaccard: float = 0.2

    @property
    def total(self) -> float:
        return self.levenshtein + self.jaro_winkler + self.dice + self.token_jaccard


DEFAULT_WEIGHTS = TextSimilarityWeights()

_WHITESPACE_RUN = re.compile(r"[ \t]+")
_NEWLINE_RUN = re.compile(r"\n+")


def levenshtein_distance(a: str, b: str) -> int:
    """Number of single-character edits turning ``a`` into ``b``."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    if len(a) < len(b):
        a, b = b, a

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + cost,
            ))
        previous = current
    return previous[-1]


def levenshtein_similarity(a: str, b: str) -> float:
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / max_len


def jaro_similarity(a: str, b: str) -> float:
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0

    window = max(max(len(a), len(b)) // 2 - 1, 0)
    matched_a = [False] * len(a)
    matched_b = [False] * len(b)
    matches = 0

    for i, char in enumerate(a):
        start = max(0, i - window)
        end = min(i + window + 1, len(b))
        for j in range(start, end):
            if matched_b[j] or b[j] != char:
                continue
            matched_a[i] = matched_b[j] = True
            matches += 1
            break

    if matches == 0:
        return 0.0

    transpositions = 0
    k = 0
    for i, char in enumerate(a):
        if not matched_a[i]:
            continue
        while not matched_b[k]:
            k += 1
        if char != b[k]:
            transpositions += 1
        k += 1

    transpositions //= 2
    return (
        matches / len(a)
        + matches / len(b)
        + (matches - transpositions) / matches
    ) / 3


def jaro_winkler_similarity(a: str, b: str, prefix_scale: float = 0.1, max_prefix: int = 4) -> float:
    jaro = jaro_similarity(a, b)
    prefix = 0
    for char_a, char_b in zip(a[:max_prefix], b[:max_prefix]):
        if char_a != char_b:
            break
        prefix += 1
    return jaro + prefix * prefix_scale * (1 - jaro)


def _bigrams(text: str) -> set[str]:
    return {text[i:i + 2] for i in range(len(text) - 1)}


def dice_similarity(a: str, b: str) -> float:
    """Sørensen-Dice coefficient over character bigrams."""
    if a == b:
        return 1.0
    if len(a) < 2 or len(b) < 2:
        return 0.0
    bigrams_a = _bigrams(a)
    bigrams_b = _bigrams(b)
    return 2 * len(bigrams_a & bigrams_b) / (len(bigrams_a) + len(bigrams_b))


def token_jaccard_similarity(a: str, b: str) -> float:
    tokens_a = set(a.split())
    tokens_b = set(b.split())
    if not tokens_a and not tokens_b:
        return 1.0
    if not tokens_a or not tokens_b:
        return 0.0
    return len(tokens_a & tokens_b) / len(tokens_a | tokens_b)


def text_similarity(a: str, b: str, weights: TextSimilarityWeights = DEFAULT_WEIGHTS) -> float:
    """Weighted combination of all four metrics, in [0, 1]."""
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    if weights.total <= 0:
        return 0.0
    score = (
        levenshtein_similarity(a, b) * weights.levenshtein
        + jaro_winkler_similarity(a, b) * weights.jaro_winkler
        + dice_similarity(a, b) * weights.dice
        + token_jaccard_similarity(a, b) * weights.token_jaccard
    )
    return max(0.0, min(1.0, score / weights.total))


def normalize_text(
    text: str,
    case_sensitive: bool = True,
    remove_extra_spaces: bool = True,
    trim_lines: bool = True,
) -> str:
    """Normalise whitespace, line endings and optionally case."""
    normalized = text.replace("\r\n", "\n").replace("\r", "\n")

    if trim_lines:
        normalized = "\n".join(line.strip() for line in normalized.split("\n"))

    if remove_extra_spaces:
        normalized = _WHITESPACE_RUN.sub(" ", normalized)
        normalized = _NEWLINE_RUN.sub("\n", normalized)

    normalized = normalized.strip()

    if not case_sensitive:
        normalized = normalized.lower()

    return normalized


def normalized_text_similarity(
    a: str,
    b: str,
    case_sensitive: bool = True,
    remove_extra_spaces: bool = True,
    trim_lines: bool = True,
    weights: TextSimilarityWeights = DEFAULT_WEIGHTS,
) -> tuple[float, str, str]:
    """Similarity of two texts after normalisation.

    Returns:
        Tuple of (similarity, normalized_a, normalized_b)
    """
    normalized_a = normalize_text(a, case_sensitive, remove_extra_spaces, trim_lines)
    normalized_b = normalize_text(b, case_sensitive, remove_extra_spaces, trim_lines)
    return text_similarity(normalized_a, normalized_b, weights), normalized_a, normalized_b
