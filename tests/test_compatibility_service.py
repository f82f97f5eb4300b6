"""Unit tests for CompatibilityService: weighted combination, sub-scores and filters."""
import uuid
from unittest.mock import MagicMock, patch

import pytest
from pydantic import ValidationError

from builderlink.config import Settings
from builderlink.errors import InvalidArgumentError
from builderlink.schemas.compatibility import (
    CompensationType,
    Location,
    MatchQuality,
    Range,
    RemotePreference,
    RiskAppetite,
    StartupStage,
)
from builderlink.services.compatibility_service import (
    CompatibilityService,
    apply_hard_filters,
    commitment_score,
    compensation_score,
    geography_score,
    skills_score,
    stage_score,
)

from conftest import DEFAULT_WEIGHTS


@pytest.fixture
def scorer():
    with patch("builderlink.services.compatibility_service.get_settings") as mock:
        settings = MagicMock()
        settings.compatibility_weights = dict(DEFAULT_WEIGHTS)
        settings.MATCH_MIN_SCORE = 60
        settings.MATCH_CANDIDATE_LIMIT = 50
        mock.return_value = settings
        service = CompatibilityService()
    return service


def _scores(**overrides):
    base = dict(compensation=50, commitment=50, stage=50, skills=50, scenario=50, geography=50)
    base.update(overrides)
    return base


class TestCombine:
    """Weighted sum and weight redistribution."""

    def test_uniform_scores(self, scorer):
        result = scorer.combine(_scores(**{d: 69 for d in DEFAULT_WEIGHTS}))
        assert result.score == 69
        assert result.quality == MatchQuality.FAIR
        assert result.passes

    def test_weighted_example(self, scorer):
        # 0.3*50 + 0.2*80 + 0.15*100 + 0.15*50 + 0.1*80 + 0.1*75 = 69
        result = scorer.combine(
            dict(compensation=50, commitment=80, stage=100, skills=50, scenario=80, geography=75)
        )
        assert result.score == 69
        assert result.weighted["compensation"] == 15.0
        assert result.weights_applied == DEFAULT_WEIGHTS
        assert not result.scenario_redistributed

    def test_missing_scenario_redistributes_weight(self, scorer):
        # (24 + 12 + 9 + 12 + 8) / 0.9 = 72.2
        result = scorer.combine(
            dict(compensation=80, commitment=60, stage=60, skills=80, scenario=None, geography=80)
        )
        assert result.score == 72
        assert result.scenario_redistributed
        assert result.breakdown.scenario is None
        assert result.weights_applied["scenario"] == 0.0
        assert result.weights_applied["compensation"] == pytest.approx(0.3 / 0.9, abs=1e-6)
        assert sum(result.weights_applied.values()) == pytest.approx(1.0, abs=1e-5)
        assert "scenario" not in result.weighted

    def test_absent_scenario_key_is_treated_as_missing(self, scorer):
        scores = _scores()
        del scores["scenario"]
        assert scorer.combine(scores).scenario_redistributed

    def test_half_up_rounding(self, scorer):
        # 50.5 rounds to 51, not to the even neighbour
        assert scorer.combine(_scores(geography=55)).score == 51

    @pytest.mark.parametrize(
        "value,quality",
        [(100, MatchQuality.EXCELLENT), (90, MatchQuality.EXCELLENT),
         (89, MatchQuality.GOOD), (75, MatchQuality.GOOD),
         (74, MatchQuality.FAIR), (60, MatchQuality.FAIR),
         (59, MatchQuality.WEAK), (0, MatchQuality.WEAK)],
    )
    def test_quality_tiers(self, scorer, value, quality):
        assert scorer.combine({d: value for d in DEFAULT_WEIGHTS}).quality == quality

    def test_missing_required_dimension(self, scorer):
        scores = _scores()
        del scores["skills"]
        with pytest.raises(InvalidArgumentError):
            scorer.combine(scores)

    @pytest.mark.parametrize("dimension", ["compensation", "scenario"])
    @pytest.mark.parametrize("value", [-1, 101])
    def test_out_of_range_sub_score(self, scorer, dimension, value):
        with pytest.raises(InvalidArgumentError):
            scorer.combine(_scores(**{dimension: value}))

    @pytest.mark.parametrize("available", [True, False])
    def test_applied_weights_sum_to_one(self, scorer, available):
        assert sum(scorer.applied_weights(available).values()) == pytest.approx(1.0)


class TestWeightValidation:
    """Weights must be a complete distribution."""

    def test_weights_not_summing_to_one(self):
        with pytest.raises(ValueError):
            CompatibilityService(weights={**DEFAULT_WEIGHTS, "skills": 0.5})

    def test_unknown_dimension(self):
        weights = {**DEFAULT_WEIGHTS}
        weights["culture"] = weights.pop("geography")
        with pytest.raises(ValueError):
            CompatibilityService(weights=weights)

    def test_settings_reject_bad_weights(self):
        with pytest.raises(ValidationError):
            Settings(SKILLS_WEIGHT=0.5)

    def test_settings_default_weights(self):
        assert Settings().compatibility_weights == DEFAULT_WEIGHTS


class TestSubScores:
    """Profile comparison helpers."""

    def test_compensation_equity_only_exact(self, opening_terms, builder_terms):
        assert compensation_score(opening_terms, builder_terms) == 100

    def test_compensation_partial_matches(self, opening_terms, builder_terms):
        stipend = builder_terms.model_copy(
            update={"compensation_openness": [CompensationType.EQUITY_STIPEND]}
        )
        assert compensation_score(opening_terms, stipend) == 50

        paid_only = builder_terms.model_copy(
            update={"compensation_openness": [CompensationType.PAID_ONLY]}
        )
        assert compensation_score(opening_terms, paid_only) == 25

        with_cash = opening_terms.model_copy(update={"cash_range": Range(min=10, max=20)})
        assert compensation_score(with_cash, builder_terms) == 75
        assert compensation_score(with_cash, paid_only) == 100

    @pytest.mark.parametrize("hours,expected", [(45, 100), (40, 100), (32, 80), (24, 60), (16, 40), (10, 0)])
    def test_commitment(self, opening_terms, builder_terms, hours, expected):
        builder = builder_terms.model_copy(update={"hours_per_week": hours})
        assert commitment_score(opening_terms, builder) == expected

    @pytest.mark.parametrize(
        "risk,stage,expected",
        [(RiskAppetite.HIGH, StartupStage.EARLY_REVENUE, 80),
         (RiskAppetite.MEDIUM, StartupStage.IDEA, 60),
         (RiskAppetite.LOW, StartupStage.MVP_PROGRESS, 60),
         (RiskAppetite.LOW, StartupStage.MVP_LIVE, 100)],
    )
    def test_stage(self, founder_terms, builder_terms, risk, stage, expected):
        founder = founder_terms.model_copy(update={"startup_stage": stage})
        builder = builder_terms.model_copy(update={"risk_appetite": risk})
        assert stage_score(founder, builder) == expected

    def test_skills_substring_either_way(self, opening_terms, builder_terms):
        assert skills_score(opening_terms, builder_terms) == 100
        partial = builder_terms.model_copy(update={"skills": ["Python"]})
        assert skills_score(opening_terms, partial) == 50

    def test_skills_rounds_half_up(self, opening_terms, builder_terms):
        opening = opening_terms.model_copy(update={"skills_required": ["python", "go", "rust"]})
        assert skills_score(opening, builder_terms) == 33
        assert skills_score(opening.model_copy(update={"skills_required": []}), builder_terms) == 100

    def test_geography(self, opening_terms, founder_terms, builder_terms):
        assert geography_score(opening_terms, founder_terms, builder_terms) == 100

        hybrid = builder_terms.model_copy(update={"remote_preference": RemotePreference.HYBRID})
        assert geography_score(opening_terms, founder_terms, hybrid) == 75

        abroad = hybrid.model_copy(update={"location": Location(city="Berlin", country="Germany")})
        assert geography_score(opening_terms, founder_terms, abroad) == 50

        onsite = opening_terms.model_copy(update={"remote_preference": RemotePreference.ONSITE})
        far = abroad.model_copy(update={"remote_preference": RemotePreference.ONSITE})
        assert geography_score(onsite, founder_terms, far) == 25

        same_city = far.model_copy(update={"location": Location(city="bengaluru", country="India")})
        assert geography_score(onsite, founder_terms, same_city) == 100


class TestHardFilters:
    """Deal-breakers short-circuit scoring."""

    def test_passing_pair(self, opening_terms, founder_terms, builder_terms):
        assert apply_hard_filters(opening_terms, founder_terms, builder_terms) == (True, None)

    def test_paid_only_for_equity_opening(self, opening_terms, founder_terms, builder_terms):
        builder = builder_terms.model_copy(
            update={"compensation_openness": [CompensationType.PAID_ONLY]}
        )
        passes, reason = apply_hard_filters(opening_terms, founder_terms, builder)
        assert not passes
        assert reason.startswith("Compensation mismatch")

    def test_commitment_gap(self, opening_terms, founder_terms, builder_terms):
        builder = builder_terms.model_copy(update={"hours_per_week": 15})
        passes, reason = apply_hard_filters(opening_terms, founder_terms, builder)
        assert not passes
        assert "15hrs" in reason

    def test_low_risk_idea_stage(self, opening_terms, founder_terms, builder_terms):
        founder = founder_terms.model_copy(update={"startup_stage": StartupStage.IDEA})
        builder = builder_terms.model_copy(update={"risk_appetite": RiskAppetite.LOW})
        passes, reason = apply_hard_filters(opening_terms, founder, builder)
        assert not passes
        assert reason.startswith("Risk mismatch")

    def test_role_not_of_interest(self, opening_terms, founder_terms, builder_terms):
        builder = builder_terms.model_copy(update={"roles_interested": ["Designer"]})
        passes, reason = apply_hard_filters(opening_terms, founder_terms, builder)
        assert not passes
        assert reason.startswith("Role mismatch")

        anything = builder_terms.model_copy(update={"roles_interested": []})
        assert apply_hard_filters(opening_terms, founder_terms, anything)[0]

    def test_onsite_opening_remote_builder(self, opening_terms, founder_terms, builder_terms):
        opening = opening_terms.model_copy(update={"remote_preference": RemotePreference.ONSITE})
        passes, reason = apply_hard_filters(opening, founder_terms, builder_terms)
        assert not passes
        assert reason.startswith("Geography mismatch")


class TestEvaluate:
    """Hard filters followed by weighted scoring."""

    def test_full_match_without_scenario(self, scorer, opening_terms, founder_terms, builder_terms):
        result = scorer.evaluate(opening_terms, founder_terms, builder_terms)
        assert result.score == 100
        assert result.scenario_redistributed
        assert result.quality == MatchQuality.EXCELLENT

    def test_mixed_profile(self, scorer, opening_terms, founder_terms, builder_terms):
        builder = builder_terms.model_copy(
            update={
                "compensation_openness": [CompensationType.EQUITY_STIPEND],
                "hours_per_week": 32,
                "risk_appetite": RiskAppetite.MEDIUM,
                "skills": ["python"],
                "remote_preference": RemotePreference.HYBRID,
            }
        )
        result = scorer.evaluate(opening_terms, founder_terms, builder, scenario_score=80)
        assert result.breakdown.model_dump() == dict(
            compensation=50, commitment=80, stage=100, skills=50, scenario=80, geography=75
        )
        assert result.score == 69

    def test_failed_filter_scores_zero(self, scorer, opening_terms, founder_terms, builder_terms):
        builder = builder_terms.model_copy(update={"hours_per_week": 5})
        result = scorer.evaluate(opening_terms, founder_terms, builder, scenario_score=100)
        assert result.score == 0
        assert not result.passes
        assert result.reason
        assert result.breakdown is None


class TestRankBuilders:
    """Candidate ranking for one opening."""

    def _builder(self, template, **update):
        builder_id = uuid.uuid4()
        return template.model_copy(
            update={"builder_id": builder_id, "builder_profile_id": uuid.uuid4(), **update}
        )

    def test_sorted_filtered_and_limited(self, scorer, opening_terms, founder_terms, builder_terms):
        strong = self._builder(builder_terms)
        medium = self._builder(builder_terms, hours_per_week=32, skills=["python"])
        weak = self._builder(
            builder_terms,
            hours_per_week=16,
            skills=[],
            compensation_openness=[CompensationType.INTERNSHIP],
        )
        rejected = self._builder(builder_terms, roles_interested=["Designer"])

        ranked = scorer.rank_builders(
            opening_terms, founder_terms, [weak, rejected, medium, strong]
        )
        assert [c.builder_id for c in ranked] == [strong.builder_id, medium.builder_id]
        assert all(c.opening_id == opening_terms.opening_id for c in ranked)

        top = scorer.rank_builders(
            opening_terms, founder_terms, [medium, strong], limit=1
        )
        assert [c.builder_id for c in top] == [strong.builder_id]

    def test_scenario_scores_used(self, scorer, opening_terms, founder_terms, builder_terms):
        builder = self._builder(builder_terms)
        ranked = scorer.rank_builders(
            opening_terms, founder_terms, [builder], scenario_scores={builder.builder_id: 0}
        )
        assert ranked[0].compatibility.score == 90
        assert ranked[0].compatibility.breakdown.scenario == 0

    def test_founder_own_profile_skipped(self, scorer, opening_terms, founder_terms, builder_terms):
        own = builder_terms.model_copy(update={"builder_id": founder_terms.founder_id})
        assert scorer.rank_builders(opening_terms, founder_terms, [own]) == []
