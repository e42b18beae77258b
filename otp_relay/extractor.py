"""Verification code extraction by keyword-proximity scoring.

Every run of exactly six digits in the subject or body is a candidate.
A candidate scores higher the closer it sits to a verification keyword
in the same text; subject candidates get a large fixed bonus.  The
single best candidate wins.
"""

from __future__ import annotations

import re

from .models import CodeCandidate

SUBJECT_WEIGHT = 100_000
BODY_WEIGHT = 0
MAX_DISTANCE = 10_000

KEYWORDS = (
    "验证码",
    "verification code",
    "verification",
    "passcode",
    "otp",
    "code",
)

_CODE_RE = re.compile(r"(?<![0-9])[0-9]{6}(?![0-9])")
_KEYWORD_RES = tuple(re.compile(re.escape(keyword), re.IGNORECASE) for keyword in KEYWORDS)


def collect_candidates(text: str, source_weight: int) -> list[CodeCandidate]:
    """Return one candidate per six-digit run in *text*, left to right."""
    return [
        CodeCandidate(
            code=match.group(0),
            position=match.start(),
            source_text=text,
            source_weight=source_weight,
        )
        for match in _CODE_RE.finditer(text)
    ]


def _keyword_positions(text: str) -> list[int]:
    return [match.start() for pattern in _KEYWORD_RES for match in pattern.finditer(text)]


def score_candidate(candidate: CodeCandidate, keyword_positions: list[int] | None = None) -> int:
    """Source weight plus proximity to the nearest keyword occurrence."""
    if keyword_positions is None:
        keyword_positions = _keyword_positions(candidate.source_text)
    if not keyword_positions:
        return candidate.source_weight
    distance = min(abs(candidate.position - pos) for pos in keyword_positions)
    return candidate.source_weight + MAX_DISTANCE - min(distance, MAX_DISTANCE)


def extract_code(subject: str, body: str) -> str | None:
    """Pick the most plausible verification code, or None.

    Ties keep discovery order: subject before body, left to right.
    """
    scored: list[tuple[int, CodeCandidate]] = []
    for text, weight in ((subject or "", SUBJECT_WEIGHT), (body or "", BODY_WEIGHT)):
        candidates = collect_candidates(text, weight)
        if not candidates:
            continue
        positions = _keyword_positions(text)
        scored.extend((score_candidate(c, positions), c) for c in candidates)

    if not scored:
        return None

    # max() keeps the first of equal scores
    _, best = max(scored, key=lambda pair: pair[0])
    return best.code
