"""
BuilderLink: Weighted multi-factor compatibility scoring.

Six dimension sub-scores (each 0-100) are combined into one weighted total:

  total = Σ w_d × s_d      for d in compensation, commitment, stage,
                           skills, scenario, geography

Default weights: compensation=0.30, commitment=0.20, stage=0.15,
skills=0.15, scenario=0.10, geography=0.10.

When the scenario sub-score is unavailable (either side has not completed the
assessment) its weight is redistributed proportionally over the other five:

  w_d' = w_d / (1 - w_scenario)

so a candidate without a scenario assessment is neither penalised nor
rewarded.  The total is rounded half-up to an integer and clamped to [0, 100].

The profile-comparison helpers below produce the five non-scenario sub-scores
from the narrow profile projections in ``builderlink.schemas.compatibility``.
"""

from __future__ import annotations

import math
import uuid
from typing import Mapping, Optional, Sequence

import structlog

from builderlink.config import get_settings
from builderlink.errors import InvalidArgumentError
from builderlink.schemas.compatibility import (
    BuilderTerms,
    CompatibilityBreakdown,
    CompatibilityResult,
    CompensationType,
    Dimension,
    FounderTerms,
    MatchQuality,
    OpeningTerms,
    RankedCandidate,
    RemotePreference,
    RiskAppetite,
    StartupStage,
)

logger = structlog.get_logger("builderlink.compatibility_service")

# ──────────────────────────────────────────────────────────────────────────────
# Constants
# ──────────────────────────────────────────────────────────────────────────────

_DIMENSIONS: tuple[str, ...] = tuple(d.value for d in Dimension)
_REQUIRED_DIMENSIONS: tuple[str, ...] = tuple(
    d for d in _DIMENSIONS if d != Dimension.SCENARIO.value
)

# Builder risk appetite × founder startup stage
STAGE_COMPATIBILITY: dict[RiskAppetite, dict[StartupStage, int]] = {
    RiskAppetite.HIGH: {
        StartupStage.IDEA: 100,
        StartupStage.MVP_PROGRESS: 100,
        StartupStage.MVP_LIVE: 100,
        StartupStage.EARLY_REVENUE: 80,
    },
    RiskAppetite.MEDIUM: {
        StartupStage.IDEA: 60,
        StartupStage.MVP_PROGRESS: 100,
        StartupStage.MVP_LIVE: 100,
        StartupStage.EARLY_REVENUE: 100,
    },
    RiskAppetite.LOW: {
        StartupStage.IDEA: 0,
        StartupStage.MVP_PROGRESS: 60,
        StartupStage.MVP_LIVE: 100,
        StartupStage.EARLY_REVENUE: 100,
    },
}

_DEFAULT_STAGE_SCORE = 50
MIN_COMMITMENT_RATIO = 0.4


def _round_half_up(value: float) -> int:
    # round() first to drop float noise such as 72.49999999999999
    return int(math.floor(round(value, 9) + 0.5))


def _quality_for(score: int) -> MatchQuality:
    if score >= 90:
        return MatchQuality.EXCELLENT
    if score >= 75:
        return MatchQuality.GOOD
    if score >= 60:
        return MatchQuality.FAIR
    return MatchQuality.WEAK


# ──────────────────────────────────────────────────────────────────────────────
# Profile comparison
# ──────────────────────────────────────────────────────────────────────────────

def compensation_score(opening: OpeningTerms, builder: BuilderTerms) -> int:
    has_equity = opening.equity_range.max > 0
    has_cash = opening.cash_range.max > 0
    accepts = set(builder.compensation_openness)
    equity_only = CompensationType.EQUITY_ONLY in accepts
    equity_stipend = CompensationType.EQUITY_STIPEND in accepts
    internship = CompensationType.INTERNSHIP in accepts
    paid_only = CompensationType.PAID_ONLY in accepts

    if has_equity and not has_cash and equity_only:
        return 100
    if has_equity and has_cash and (equity_stipend or internship):
        return 100
    if has_cash and paid_only:
        return 100

    if has_equity and has_cash and equity_only:
        return 75
    if has_equity and not has_cash and equity_stipend:
        return 50
    if has_equity and paid_only:
        return 25

    score = 0
    if has_equity and (equity_only or equity_stipend):
        score += 50
    if has_cash and (equity_stipend or paid_only or internship):
        score += 50
    return min(score, 100)


def commitment_score(opening: OpeningTerms, builder: BuilderTerms) -> int:
    if builder.hours_per_week >= opening.hours_per_week:
        return 100
    ratio = builder.hours_per_week / opening.hours_per_week
    if ratio >= 0.8:
        return 80
    if ratio >= 0.6:
        return 60
    if ratio >= MIN_COMMITMENT_RATIO:
        return 40
    return 0


def stage_score(founder: FounderTerms, builder: BuilderTerms) -> int:
    row = STAGE_COMPATIBILITY.get(builder.risk_appetite, {})
    return row.get(founder.startup_stage, _DEFAULT_STAGE_SCORE)


def skills_score(opening: OpeningTerms, builder: BuilderTerms) -> int:
    """Share of required skills the builder covers.

    A required skill counts as covered when it and one of the builder's
    skills contain each other (case-insensitive), so "react" covers
    "React Native" and vice versa.
    """
    required = [s.lower() for s in opening.skills_required]
    if not required:
        return 100
    available = [s.lower() for s in builder.skills]
    matched = [
        skill for skill in required
        if any(skill in s or s in skill for s in available)
    ]
    return _round_half_up(len(matched) / len(required) * 100)


def geography_score(
    opening: OpeningTerms, founder: FounderTerms, builder: BuilderTerms
) -> int:
    if (
        opening.remote_preference == RemotePreference.REMOTE
        and builder.remote_preference == RemotePreference.REMOTE
    ):
        return 100

    founder_city = (founder.location.city or "").lower()
    builder_city = (builder.location.city or "").lower()
    if founder_city and founder_city == builder_city:
        return 100

    founder_country = (founder.location.country or "").lower()
    builder_country = (builder.location.country or "").lower()
    if founder_country and founder_country == builder_country:
        return 75

    if RemotePreference.HYBRID in (opening.remote_preference, builder.remote_preference):
        return 50
    return 25


def apply_hard_filters(
    opening: OpeningTerms, founder: FounderTerms, builder: BuilderTerms
) -> tuple[bool, Optional[str]]:
    """Deal-breakers checked before any scoring.  Returns ``(passes, reason)``."""
    if opening.cash_range.max == 0 and set(builder.compensation_openness) == {
        CompensationType.PAID_ONLY
    }:
        return False, "Compensation mismatch: opening is equity-only, builder wants paid-only"

    if builder.hours_per_week / opening.hours_per_week < MIN_COMMITMENT_RATIO:
        return False, (
            f"Commitment gap too large: builder offers {builder.hours_per_week:g}hrs, "
            f"opening requires {opening.hours_per_week:g}hrs"
        )

    if (
        builder.risk_appetite == RiskAppetite.LOW
        and founder.startup_stage == StartupStage.IDEA
    ):
        return False, "Risk mismatch: low-risk builder cannot match an idea-stage startup"

    if builder.roles_interested and opening.role_type not in builder.roles_interested:
        return False, (
            f"Role mismatch: builder is interested in {', '.join(builder.roles_interested)}, "
            f"opening is {opening.role_type}"
        )

    if (
        opening.remote_preference == RemotePreference.ONSITE
        and builder.remote_preference == RemotePreference.REMOTE
    ):
        return False, "Geography mismatch: opening requires on-site, builder is remote-only"

    return True, None


# ──────────────────────────────────────────────────────────────────────────────
# Scorer
# ──────────────────────────────────────────────────────────────────────────────

class CompatibilityService:
    """Combine dimension sub-scores into a point-in-time compatibility result.

    Weights default to the values in ``Settings`` and can be overridden per
    instance, which the test suite uses to pin them.
    """

    def __init__(
        self,
        weights: Mapping[str, float] | None = None,
        min_score: int | None = None,
        candidate_limit: int | None = None,
    ) -> None:
        settings = get_settings()
        self.weights: dict[str, float] = dict(
            weights if weights is not None else settings.compatibility_weights
        )
        if set(self.weights) != set(_DIMENSIONS):
            raise ValueError(f"Weights must cover exactly {_DIMENSIONS}")
        if not math.isclose(sum(self.weights.values()), 1.0, abs_tol=1e-6):
            raise ValueError("Compatibility weights must sum to 1.0")
        if self.weights[Dimension.SCENARIO.value] >= 1.0:
            raise ValueError("Scenario weight must leave room for other dimensions")

        self.min_score = settings.MATCH_MIN_SCORE if min_score is None else min_score
        self.candidate_limit = (
            settings.MATCH_CANDIDATE_LIMIT if candidate_limit is None else candidate_limit
        )

    # ── Weighted combination ─────────────────────────────────────────────

    def applied_weights(self, scenario_available: bool) -> dict[str, float]:
        """Weights actually used for one calculation.  Always sums to 1.0."""
        if scenario_available:
            return dict(self.weights)
        w_scenario = self.weights[Dimension.SCENARIO.value]
        remaining = 1.0 - w_scenario
        return {
            d: (0.0 if d == Dimension.SCENARIO.value else self.weights[d] / remaining)
            for d in _DIMENSIONS
        }

    def combine(self, sub_scores: Mapping[str, Optional[float]]) -> CompatibilityResult:
        """Combine six sub-scores into a ``CompatibilityResult``.

        Parameters
        ----------
        sub_scores:
            Mapping of dimension name to score in [0, 100].  ``scenario`` may
            be missing or ``None``; every other dimension is required.

        Raises
        ------
        InvalidArgumentError
            If a non-scenario sub-score is missing, or any supplied sub-score
            lies outside [0, 100].
        """
        for dimension in _REQUIRED_DIMENSIONS:
            if sub_scores.get(dimension) is None:
                raise InvalidArgumentError(
                    f"Missing {dimension} sub-score", dimension=dimension
                )
        for dimension in _DIMENSIONS:
            value = sub_scores.get(dimension)
            if value is not None and not 0 <= value <= 100:
                raise InvalidArgumentError(
                    f"{dimension} sub-score must be between 0 and 100",
                    dimension=dimension,
                    value=value,
                )

        scenario = sub_scores.get(Dimension.SCENARIO.value)
        weights = self.applied_weights(scenario_available=scenario is not None)

        weighted = {
            d: weights[d] * sub_scores[d]
            for d in _DIMENSIONS
            if sub_scores.get(d) is not None
        }
        total = max(0, min(100, _round_half_up(sum(weighted.values()))))

        breakdown = CompatibilityBreakdown(
            **{d: sub_scores.get(d) for d in _DIMENSIONS}
        )

        logger.debug(
            "compatibility_combined",
            score=total,
            scenario_redistributed=scenario is None,
        )
        return CompatibilityResult(
            score=total,
            passes=True,
            quality=_quality_for(total),
            breakdown=breakdown,
            weights_applied={d: round(w, 6) for d, w in weights.items()},
            weighted={d: round(v, 4) for d, v in weighted.items()},
            scenario_redistributed=scenario is None,
        )

    # ── Profile-driven evaluation ────────────────────────────────────────

    def evaluate(
        self,
        opening: OpeningTerms,
        founder: FounderTerms,
        builder: BuilderTerms,
        scenario_score: Optional[int] = None,
    ) -> CompatibilityResult:
        """Hard filters first, then the five profile sub-scores plus the
        (possibly absent) scenario score."""
        passes, reason = apply_hard_filters(opening, founder, builder)
        if not passes:
            return CompatibilityResult(
                score=0, passes=False, reason=reason, quality=MatchQuality.WEAK
            )

        return self.combine(
            {
                Dimension.COMPENSATION.value: compensation_score(opening, builder),
                Dimension.COMMITMENT.value: commitment_score(opening, builder),
                Dimension.STAGE.value: stage_score(founder, builder),
                Dimension.SKILLS.value: skills_score(opening, builder),
                Dimension.SCENARIO.value: scenario_score,
                Dimension.GEOGRAPHY.value: geography_score(opening, founder, builder),
            }
        )

    def rank_builders(
        self,
        opening: OpeningTerms,
        founder: FounderTerms,
        builders: Sequence[BuilderTerms],
        scenario_scores: Mapping[uuid.UUID, Optional[int]] | None = None,
        min_score: int | None = None,
        limit: int | None = None,
    ) -> list[RankedCandidate]:
        """Score every builder against one opening and keep the best.

        Builders failing a hard filter or scoring below ``min_score`` are
        dropped; the founder's own builder profile is skipped.
        """
        min_score = self.min_score if min_score is None else min_score
        limit = self.candidate_limit if limit is None else limit
        scenario_scores = scenario_scores or {}

        ranked: list[RankedCandidate] = []
        for builder in builders:
            if builder.builder_id == founder.founder_id:
                continue
            result = self.evaluate(
                opening, founder, builder, scenario_scores.get(builder.builder_id)
            )
            if result.passes and result.score >= min_score:
                ranked.append(
                    RankedCandidate(
                        builder_id=builder.builder_id,
                        builder_profile_id=builder.builder_profile_id,
                        opening_id=opening.opening_id,
                        compatibility=result,
                    )
                )

        ranked.sort(key=lambda c: c.compatibility.score, reverse=True)
        logger.info(
            "builders_ranked",
            opening_id=str(opening.opening_id),
            considered=len(builders),
            kept=min(len(ranked), limit),
        )
        return ranked[:limit]
