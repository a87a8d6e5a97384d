"""
tests/test_moderation_rules.py — Moderation Decision Tests
===========================================================
Policy, quest relevance, verdict combination, the local fallback and
classifier payload parsing.  No I/O.
"""

from __future__ import annotations

import pytest

from conftest import clean_result
from photoquest.database.models import ModerationStatus
from photoquest.engine.moderation import (
    ClassifierResult,
    Likelihood,
    check_relevance,
    combine_verdict,
    evaluate_policy,
    local_heuristic_result,
    parse_classifier_payload,
)
from photoquest.engine.quality import ImageMetrics, score_quality

GOOD_QUALITY = score_quality(ImageMetrics(800, 600, 1000, True, 127.5, 300.0))
BAD_QUALITY = score_quality(ImageMetrics(0, 0, 10, False))
RELEVANT = check_relevance([], [])


class TestLikelihood:
    def test_parse_names_and_ints(self):
        assert Likelihood.parse("very_likely") is Likelihood.VERY_LIKELY
        assert Likelihood.parse(1) is Likelihood.UNLIKELY
        assert Likelihood.parse(Likelihood.LIKELY) is Likelihood.LIKELY

    def test_unknown_maps_to_possible(self):
        assert Likelihood.parse("UNKNOWN") is Likelihood.POSSIBLE
        assert Likelihood.parse(None) is Likelihood.POSSIBLE
        assert Likelihood.parse(9) is Likelihood.POSSIBLE

    def test_ordered(self):
        assert Likelihood.VERY_UNLIKELY < Likelihood.POSSIBLE < Likelihood.VERY_LIKELY


class TestPolicy:
    def test_clean_passes(self):
        decision = evaluate_policy(clean_result())
        assert not decision.should_block
        assert not decision.needs_manual_review

    @pytest.mark.parametrize("category", ["adult", "violence", "racy"])
    def test_likely_blocks(self, category):
        decision = evaluate_policy(clean_result(**{category: Likelihood.LIKELY}))
        assert decision.should_block
        assert decision.flagged == (category,)

    def test_possible_needs_review(self):
        decision = evaluate_policy(clean_result(racy=Likelihood.POSSIBLE))
        assert not decision.should_block
        assert decision.needs_manual_review
        assert decision.flagged == ("racy",)

    def test_missing_category_counts_as_possible(self):
        result = ClassifierResult(True, 0.9, {"adult": Likelihood.VERY_UNLIKELY})
        assert evaluate_policy(result).needs_manual_review

    def test_low_confidence_inappropriate_needs_review(self):
        result = ClassifierResult(
            is_appropriate=False,
            confidence=0.4,
            categories={n: Likelihood.UNLIKELY for n in ("adult", "violence", "racy")},
        )
        assert evaluate_policy(result, review_confidence=0.6).needs_manual_review


class TestRelevance:
    def test_no_requirements_is_relevant(self):
        check = check_relevance(["tree"], [])
        assert check.is_relevant and check.score == 1.0

    def test_bidirectional_substring_match(self):
        check = check_relevance(["Golden Retriever dog", "grass"], ["dog", "Bridge"])
        assert check.matching == ("dog",)
        assert check.missing == ("Bridge",)
        assert check.score == 0.5
        assert check.is_relevant  # 0.5 meets the default threshold
        assert check.suggestions == ('Try to include "Bridge" in your photo',)

    def test_label_inside_subject_matches(self):
        assert check_relevance(["bridge"], ["Golden Gate Bridge"]).is_relevant

    def test_below_threshold(self):
        check = check_relevance(["grass"], ["bison", "fence"], threshold=0.5)
        assert not check.is_relevant
        assert check.score == 0.0


class TestCombineVerdict:
    def test_adult_very_likely_rejects(self):
        policy = evaluate_policy(clean_result(adult=Likelihood.VERY_LIKELY))
        status, reasons = combine_verdict(policy, RELEVANT, GOOD_QUALITY)
        assert status == ModerationStatus.REJECTED
        assert "adult" in reasons[0]

    def test_block_wins_over_everything(self):
        policy = evaluate_policy(clean_result(violence=Likelihood.LIKELY))
        irrelevant = check_relevance([], ["bison"])
        status, _ = combine_verdict(policy, irrelevant, BAD_QUALITY)
        assert status == ModerationStatus.REJECTED

    def test_all_clear_approves(self):
        status, reasons = combine_verdict(evaluate_policy(clean_result()), RELEVANT, GOOD_QUALITY)
        assert status == ModerationStatus.APPROVED
        assert reasons == ()

    def test_irrelevant_goes_to_review(self):
        status, reasons = combine_verdict(
            evaluate_policy(clean_result()), check_relevance(["grass"], ["bison"]), GOOD_QUALITY,
        )
        assert status == ModerationStatus.PENDING_REVIEW
        assert "bison" in reasons[0]

    def test_low_quality_goes_to_review(self):
        status, _ = combine_verdict(evaluate_policy(clean_result()), RELEVANT, BAD_QUALITY)
        assert status == ModerationStatus.PENDING_REVIEW


class TestLocalFallback:
    def test_suspicious_filename_is_blocked(self):
        result = local_heuristic_result("my_NSFW_pic.jpg", 1000, 800, 600)
        assert result.source == "local"
        assert evaluate_policy(result).should_block

    def test_tiny_image_needs_review(self):
        result = local_heuristic_result("img.jpg", 1000, 10, 10)
        assert result.reason == "Unusual image size"
        assert evaluate_policy(result).needs_manual_review

    def test_never_approves(self):
        result = local_heuristic_result("bison.jpg", 50_000, 800, 600)
        status, _ = combine_verdict(evaluate_policy(result), RELEVANT, GOOD_QUALITY)
        assert status == ModerationStatus.PENDING_REVIEW


class TestParsePayload:
    def test_full_payload(self):
        result = parse_classifier_payload({
            "isAppropriate": True,
            "confidence": 0.92,
            "categories": {"adult": "VERY_UNLIKELY", "violence": "UNLIKELY", "racy": "VERY_UNLIKELY"},
            "labels": ["Bison", "Grass"],
        })
        assert result.is_appropriate
        assert result.categories["violence"] is Likelihood.UNLIKELY
        assert result.labels == ("Bison", "Grass")
        assert result.source == "remote"

    def test_missing_verdict(self):
        with pytest.raises(ValueError):
            parse_classifier_payload({"confidence": 0.5})

    @pytest.mark.parametrize("confidence", [-0.1, 1.5, "high"])
    def test_bad_confidence(self, confidence):
        with pytest.raises(ValueError):
            parse_classifier_payload({"isAppropriate": True, "confidence": confidence})

    def test_missing_categories_are_possible(self):
        result = parse_classifier_payload({"isAppropriate": True, "confidence": 0.9})
        assert set(result.categories.values()) == {Likelihood.POSSIBLE}
