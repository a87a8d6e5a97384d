"""
photoquest.engine.moderation — Moderation Rules
================================================

Pure decision logic for the moderation pipeline.  Three checks are
computed independently and then combined:

* **policy** — classifier likelihoods for ``adult`` / ``violence`` /
  ``racy``.  Any LIKELY or VERY_LIKELY blocks; any POSSIBLE (or a low
  confidence "inappropriate" answer) needs a human reviewer.
* **relevance** — required subjects vs. detected labels.
* **quality** — see :mod:`photoquest.engine.quality`.

Verdict: blocked → ``rejected``; review needed, irrelevant, or low
quality → ``pending_review``; otherwise ``approved``.

When the remote classifier is unreachable, :func:`local_heuristic_result`
stands in.  It never produces an approvable result.
"""

from __future__ import annotations

import enum
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from photoquest.database.models import ModerationStatus
from photoquest.engine.quality import QualityCheck

POLICY_CATEGORIES: tuple[str, ...] = ("adult", "violence", "racy")

DEFAULT_RELEVANCE_THRESHOLD = 0.5
DEFAULT_REVIEW_CONFIDENCE = 0.6

# Local fallback thresholds
MIN_IMAGE_SIDE = 50
MAX_IMAGE_BYTES = 20 * 1024 * 1024

SUSPICIOUS_FILENAME_TERMS: tuple[str, ...] = (
    "nsfw", "adult", "xxx", "porn", "sex", "nude", "naked",
    "explicit", "mature", "erotic", "intimate",
)
_SUSPICIOUS_RE = re.compile("|".join(SUSPICIOUS_FILENAME_TERMS), re.IGNORECASE)


class Likelihood(enum.IntEnum):
    """Classifier risk level, ordered."""
    VERY_UNLIKELY = 0
    UNLIKELY = 1
    POSSIBLE = 2
    LIKELY = 3
    VERY_LIKELY = 4

    @classmethod
    def parse(cls, value: Any) -> Likelihood:
        """Accept a name (``"POSSIBLE"``), an int, or a member.

        Unknown values map to POSSIBLE so they land in manual review.
        """
        if isinstance(value, Likelihood):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            try:
                return cls(value)
            except ValueError:
                return cls.POSSIBLE
        if isinstance(value, str):
            return cls.__members__.get(value.strip().upper(), cls.POSSIBLE)
        return cls.POSSIBLE


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ClassifierResult:
    """Normalised answer from the remote classifier or the local fallback."""

    is_appropriate: bool
    confidence: float
    categories: dict[str, Likelihood]
    reason: str | None = None
    labels: tuple[str, ...] = ()
    source: str = "remote"

    def to_dict(self) -> dict:
        return {
            "is_appropriate": self.is_appropriate,
            "confidence": round(self.confidence, 3),
            "categories": {k: v.name for k, v in self.categories.items()},
            "reason": self.reason,
            "labels": list(self.labels),
            "source": self.source,
        }


@dataclass(frozen=True, slots=True)
class PolicyDecision:
    should_block: bool
    needs_manual_review: bool
    flagged: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class RelevanceCheck:
    is_relevant: bool
    score: float
    matching: tuple[str, ...] = ()
    missing: tuple[str, ...] = ()
    suggestions: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "is_relevant": self.is_relevant,
            "score": round(self.score, 3),
            "matching_requirements": list(self.matching),
            "missing_requirements": list(self.missing),
            "suggestions": list(self.suggestions),
        }


@dataclass(frozen=True, slots=True)
class ModerationVerdict:
    status: ModerationStatus
    classifier: ClassifierResult
    policy: PolicyDecision
    relevance: RelevanceCheck
    quality: QualityCheck
    message: str = ""
    reasons: tuple[str, ...] = field(default=())

    def to_dict(self) -> dict:
        """Shape persisted as ``submissions.moderation_result``."""
        return {
            "status": self.status.value,
            "is_appropriate": self.classifier.is_appropriate,
            "confidence": round(self.classifier.confidence, 3),
            "categories": {k: v.name for k, v in self.classifier.categories.items()},
            "classifier_reason": self.classifier.reason,
            "source": self.classifier.source,
            "flagged": list(self.policy.flagged),
            "quest_relevance": self.relevance.to_dict(),
            "photo_quality": self.quality.to_dict(),
            "reasons": list(self.reasons),
        }


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------
def evaluate_policy(
    result: ClassifierResult,
    review_confidence: float = DEFAULT_REVIEW_CONFIDENCE,
) -> PolicyDecision:
    levels = {name: result.categories.get(name, Likelihood.POSSIBLE) for name in POLICY_CATEGORIES}
    blocked = tuple(name for name, lvl in levels.items() if lvl >= Likelihood.LIKELY)
    if blocked:
        return PolicyDecision(should_block=True, needs_manual_review=False, flagged=blocked)

    possible = tuple(name for name, lvl in levels.items() if lvl == Likelihood.POSSIBLE)
    low_confidence_flag = not result.is_appropriate and result.confidence < review_confidence
    return PolicyDecision(
        should_block=False,
        needs_manual_review=bool(possible) or low_confidence_flag,
        flagged=possible,
    )


# ---------------------------------------------------------------------------
# Quest relevance
# ---------------------------------------------------------------------------
def check_relevance(
    detected: Iterable[str],
    required_subjects: Iterable[str],
    threshold: float = DEFAULT_RELEVANCE_THRESHOLD,
) -> RelevanceCheck:
    """Match required subjects against detected labels.

    A subject matches when it and a label contain one another,
    case-insensitively (``"dog"`` matches ``"Dog breed"``).
    """
    labels = [d.strip().lower() for d in detected if d and d.strip()]
    required = [s for s in required_subjects if s and s.strip()]
    if not required:
        return RelevanceCheck(is_relevant=True, score=1.0)

    matching: list[str] = []
    missing: list[str] = []
    for subject in required:
        needle = subject.strip().lower()
        if any(needle in label or label in needle for label in labels):
            matching.append(subject)
        else:
            missing.append(subject)

    score = len(matching) / len(required)
    return RelevanceCheck(
        is_relevant=score >= threshold,
        score=score,
        matching=tuple(matching),
        missing=tuple(missing),
        suggestions=tuple(f'Try to include "{s}" in your photo' for s in missing),
    )


# ---------------------------------------------------------------------------
# Verdict
# ---------------------------------------------------------------------------
def combine_verdict(
    policy: PolicyDecision,
    relevance: RelevanceCheck,
    quality: QualityCheck,
) -> tuple[ModerationStatus, tuple[str, ...]]:
    """Return the verdict and the human-readable reasons behind it."""
    if policy.should_block:
        return ModerationStatus.REJECTED, (
            f"Inappropriate content detected: {', '.join(policy.flagged)}",
        )

    reasons: list[str] = []
    if policy.needs_manual_review:
        if policy.flagged:
            reasons.append(f"Content flagged for review: {', '.join(policy.flagged)}")
        else:
            reasons.append("Content could not be verified automatically")
    if not relevance.is_relevant:
        reasons.append(
            f"Photo doesn't show the quest subject ({', '.join(relevance.missing)})"
        )
    if not quality.is_acceptable:
        reasons.append(f"Photo quality too low ({quality.overall_score:.0%})")

    if reasons:
        return ModerationStatus.PENDING_REVIEW, tuple(reasons)
    return ModerationStatus.APPROVED, ()


STATUS_MESSAGES: dict[ModerationStatus, str] = {
    ModerationStatus.APPROVED: "Photo approved! Quest completed.",
    ModerationStatus.PENDING_REVIEW: "Photo submitted and waiting for review.",
    ModerationStatus.REJECTED: "Photo rejected by content moderation.",
}


# ---------------------------------------------------------------------------
# Local fallback (classifier unavailable)
# ---------------------------------------------------------------------------
def _uniform(level: Likelihood) -> dict[str, Likelihood]:
    return {name: level for name in POLICY_CATEGORIES}


def local_heuristic_result(
    filename: str,
    size_bytes: int,
    width: int,
    height: int,
) -> ClassifierResult:
    """Conservative stand-in for the remote classifier.

    A suspicious filename blocks; everything else is POSSIBLE so the photo
    waits for a reviewer.  Never returns an approvable result.
    """
    if _SUSPICIOUS_RE.search(filename or ""):
        categories = _uniform(Likelihood.UNLIKELY)
        categories["adult"] = Likelihood.LIKELY
        categories["racy"] = Likelihood.LIKELY
        return ClassifierResult(
            is_appropriate=False,
            confidence=0.7,
            categories=categories,
            reason="Suspicious filename pattern",
            source="local",
        )

    if width < MIN_IMAGE_SIDE or height < MIN_IMAGE_SIDE or size_bytes > MAX_IMAGE_BYTES:
        return ClassifierResult(
            is_appropriate=False,
            confidence=0.3,
            categories=_uniform(Likelihood.POSSIBLE),
            reason="Unusual image size",
            source="local",
        )

    return ClassifierResult(
        is_appropriate=False,
        confidence=0.3,
        categories=_uniform(Likelihood.POSSIBLE),
        reason="Classifier unavailable; manual review required",
        source="local",
    )


def parse_classifier_payload(payload: Mapping[str, Any]) -> ClassifierResult:
    """Normalise a classifier JSON body.

    Raises ``ValueError`` when the body is unusable (missing verdict or
    confidence outside ``[0, 1]``).
    """
    if not isinstance(payload, Mapping) or "isAppropriate" not in payload:
        raise ValueError("classifier response missing isAppropriate")
    try:
        confidence = float(payload.get("confidence", 0.0))
    except (TypeError, ValueError) as exc:
        raise ValueError("classifier confidence is not a number") from exc
    if not 0.0 <= confidence <= 1.0:
        raise ValueError(f"classifier confidence out of range: {confidence}")

    raw_categories = payload.get("categories") or {}
    if not isinstance(raw_categories, Mapping):
        raise ValueError("classifier categories must be an object")
    categories = {name: Likelihood.parse(raw_categories.get(name)) for name in POLICY_CATEGORIES}

    labels = payload.get("labels") or []
    if not isinstance(labels, list):
        labels = []

    return ClassifierResult(
        is_appropriate=bool(payload["isAppropriate"]),
        confidence=confidence,
        categories=categories,
        reason=payload.get("reason"),
        labels=tuple(str(label) for label in labels),
        source="remote",
    )
