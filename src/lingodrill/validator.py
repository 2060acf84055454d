"""Free-text answer comparison, feedback diffs and cloze span detection."""

import re
import string
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from .models import FeedbackToken, Tolerance, ValidationResult

THRESHOLDS = {
    Tolerance.STRICT: 1.0,
    Tolerance.NORMAL: 0.85,  # ~1 typo per 7 chars
    Tolerance.LENIENT: 0.70,  # ~2 typos per 7 chars
}

PUNCTUATION = string.punctuation + "…¿¡«»“”‘’"
CLOZE_MASK = "____"

_WHITESPACE = re.compile(r"\s+")
# Hyphenated and apostrophe words ("tiba-tiba", "don't") stay one token.
_WORD = re.compile(r"\w+(?:[-'’]\w+)*")


def normalize(text: str) -> str:
    """Trim, lowercase and strip leading/terminal punctuation."""
    text = _WHITESPACE.sub(" ", (text or "").lower()).strip()
    return text.strip(PUNCTUATION + " ")


def levenshtein_distance(s1: str, s2: str) -> int:
    """Calculate Levenshtein distance between two strings."""
    if len(s1) < len(s2):
        return levenshtein_distance(s2, s1)

    if len(s2) == 0:
        return len(s1)

    previous_row = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1):
        current_row = [i + 1]
        for j, c2 in enumerate(s2):
            insertions = previous_row[j + 1] + 1
            deletions = current_row[j] + 1
            substitutions = previous_row[j] + (c1 != c2)
            current_row.append(min(insertions, deletions, substitutions))
        previous_row = current_row

    return previous_row[-1]


def similarity(a: str, b: str) -> float:
    """Similarity ratio in [0, 1] between the normalized forms of a and b."""
    a, b = normalize(a), normalize(b)
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    return 1.0 - levenshtein_distance(a, b) / max(len(a), len(b))


def candidate_answers(correct_answer: str, alternates: Iterable[str] = ()) -> List[str]:
    """Primary answer parts ("to go / takeaway") followed by alternates, deduplicated."""
    candidates: List[str] = []
    seen = set()
    parts = [p.strip() for p in (correct_answer or "").split("/")]
    for answer in parts + [a.strip() for a in alternates or ()]:
        key = normalize(answer)
        if key and key not in seen:
            seen.add(key)
            candidates.append(answer)
    return candidates or [correct_answer or ""]


def validate(
    user_input: str,
    correct_answer: str,
    alternates: Optional[Sequence[str]] = None,
    tolerance: Tolerance = Tolerance.NORMAL,
) -> ValidationResult:
    """
    Compare a typed answer with the correct answer and its alternates.

    The first candidate that clears the tolerance threshold wins, so the primary
    answer is preferred over alternates on ties. When nothing matches, the
    primary answer is reported together with the best similarity seen.
    """
    tolerance = Tolerance(tolerance)
    threshold = THRESHOLDS[tolerance]
    candidates = candidate_answers(correct_answer, alternates or ())
    user_norm = normalize(user_input)

    best = 0.0
    for answer in candidates:
        if tolerance is Tolerance.STRICT:
            score = 1.0 if user_norm and user_norm == normalize(answer) else 0.0
        else:
            score = similarity(user_input, answer) if user_norm else 0.0
        if score >= threshold:
            return ValidationResult(is_correct=True, matched_answer=answer, similarity=score)
        best = max(best, score)

    return ValidationResult(is_correct=False, matched_answer=candidates[0], similarity=best)


def diff(user_answer: str, correct_answer: str) -> List[FeedbackToken]:
    """
    Position-by-position comparison of the normalized answers for feedback display.

    Extra characters typed by the user are ``wrong``; positions the user never
    reached are ``missing`` and displayed as ``_``.
    """
    user, correct = normalize(user_answer), normalize(correct_answer)
    tokens = []
    for i in range(max(len(user), len(correct))):
        if i < len(user) and i < len(correct):
            status = "correct" if user[i] == correct[i] else "wrong"
            tokens.append(FeedbackToken(char=user[i], status=status))
        elif i < len(user):
            tokens.append(FeedbackToken(char=user[i], status="wrong"))
        else:
            tokens.append(FeedbackToken(char="_", status="missing"))
    return tokens


def tokenize(sentence: str) -> List[Tuple[str, int, int]]:
    """Word tokens of a sentence as (text, start, end)."""
    return [(m.group(0), m.start(), m.end()) for m in _WORD.finditer(sentence or "")]


def find_cloze_span(
    sentence: str,
    candidates: Sequence[str],
    threshold: float = 0.6,
    prompt: Optional[str] = None,
) -> Set[int]:
    """
    Locate the word tokens of ``sentence`` that spell the target vocabulary.

    Every start position is scanned with windows from the longest to a single
    token; a window counts when its joined text reaches ``threshold`` against a
    candidate answer or the prompt. The widest matching window wins, the
    earliest on ties, so a multi-word phrase is never half masked. Returns the
    token indices to mask, or an empty set when nothing clears the threshold.
    """
    words = [w for w, _, _ in tokenize(sentence)]
    targets = [c for c in candidates if normalize(c)]
    if prompt and normalize(prompt):
        targets.append(prompt)
    if not words or not targets:
        return set()

    best_span = None
    for start in range(len(words)):
        for width in range(len(words) - start, 0, -1):
            text = " ".join(words[start:start + width])
            if max(similarity(text, t) for t in targets) < threshold:
                continue
            if best_span is None or width > best_span[1]:
                best_span = (start, width)
            break  # widest match at this start

    if best_span is None:
        return set()
    start, width = best_span
    return set(range(start, start + width))


def mask_cloze(
    sentence: str,
    candidates: Sequence[str],
    threshold: float = 0.6,
    prompt: Optional[str] = None,
    mask: str = CLOZE_MASK,
) -> str:
    """Return ``sentence`` with the detected span replaced by a single mask."""
    indices = find_cloze_span(sentence, candidates, threshold, prompt)
    if not indices:
        return sentence
    tokens = tokenize(sentence)
    first, last = min(indices), max(indices)
    return sentence[: tokens[first][1]] + mask + sentence[tokens[last][2]:]
