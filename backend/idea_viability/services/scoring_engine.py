"""Deterministic Scoring Engine.

Turns component signals into insight scores and a list of insights into an
overall viability assessment using fixed mathematical formulas.

Rules
-----
- NO API calls
- NO LLMs
- NO state retained between calls
- Pure deterministic math over explicit inputs
- Descending sorts are stable: equal scores keep their input order
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence

from ..config import ScoringConfig, SourceWeights
from ..constants import (
    FALLBACK_CONTRIBUTIONS,
    HIGH_RISK_PENALTY,
    MEDIUM_RISK_PENALTY,
    NEUTRAL_TREND_VALUE,
    TREND_STANCE_VALUES,
)
from ..schemas.insight_schema import (
    ComponentScores,
    Insight,
    Intensity,
    OverallViability,
    SourceContributions,
)

NO_INSIGHTS_NOTE = "No insights available for viability assessment."

_DEFAULT_CONFIG = ScoringConfig()


def _clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    """Clamp *value* to [lo, hi]."""
    return max(lo, min(hi, value))


def _config(config: Optional[ScoringConfig]) -> ScoringConfig:
    return config if config is not None else _DEFAULT_CONFIG


def _sorted_by_score(insights: Sequence[Insight]) -> list[Insight]:
    # sorted() is stable with reverse=True, so ties keep input order
    return sorted(insights, key=lambda insight: insight.score, reverse=True)


# ===================================================================== #
#  Basic normalization                                                    #
# ===================================================================== #

def normalize_count(count: float, max_count: float) -> float:
    """count / max_count capped at 1.0; 0 when max_count is 0."""
    if max_count == 0:
        return 0.0
    return min(count / max_count, 1.0)


def map_intensity(intensity: Intensity, config: Optional[ScoringConfig] = None) -> float:
    """Table lookup: low → 0.3, medium → 0.6, high → 1.0."""
    return getattr(_config(config).intensity_weights, intensity)


# ===================================================================== #
#  Component scores                                                       #
# ===================================================================== #

def compute_reddit_component(
    mentions: float,
    max_mentions: float,
    intensity: Intensity,
    config: Optional[ScoringConfig] = None,
) -> float:
    """normalized_mentions * intensity_weight"""
    return normalize_count(mentions, max_mentions) * map_intensity(intensity, config)


def compute_competitor_component(num_competitors_addressing: int, total_competitors: int) -> float:
    """num_competitors_addressing / total_competitors, capped at 1.0."""
    if total_competitors == 0:
        return 0.0
    return min(num_competitors_addressing / total_competitors, 1.0)


def compute_trend_component(stance: str) -> float:
    """supportive → 1.0, neutral → 0.5, risky → 0.0; anything else → 0.5."""
    return TREND_STANCE_VALUES.get(stance, NEUTRAL_TREND_VALUE)


def compute_average_trend_component(stances: Iterable[str]) -> float:
    """Mean trend component; neutral (0.5) when there are no stances."""
    values = [compute_trend_component(stance) for stance in stances]
    if not values:
        return NEUTRAL_TREND_VALUE
    return sum(values) / len(values)


def build_component_scores(
    *,
    mentions: float,
    max_mentions: float,
    intensity: Intensity,
    num_competitors_addressing: int,
    total_competitors: int,
    stances: Iterable[str],
    config: Optional[ScoringConfig] = None,
) -> ComponentScores:
    """Assemble the three components of one insight from raw signals."""
    return ComponentScores(
        reddit_component=compute_reddit_component(mentions, max_mentions, intensity, config),
        competitor_component=compute_competitor_component(num_competitors_addressing, total_competitors),
        trend_component=compute_average_trend_component(stances),
    )


# ===================================================================== #
#  Insight scoring                                                        #
# ===================================================================== #

def compute_insight_score(
    components: ComponentScores,
    weights: Optional[SourceWeights] = None,
) -> float:
    """Weighted sum of the components, clamped to [0, 1].

    Weights are configuration and are not validated here; the clamp keeps
    the result in range even when they sum to more than 1.
    """
    w = weights if weights is not None else _DEFAULT_CONFIG.source_weights
    score = (
        w.reddit * components.reddit_component
        + w.competitors * components.competitor_component
        + w.industry_trends * components.trend_component
    )
    return _clamp(score)


def normalize_source_contributions(components: ComponentScores) -> SourceContributions:
    """Share of each component in the total; fixed 0.33/0.33/0.34 when all are zero."""
    total = (
        components.reddit_component
        + components.competitor_component
        + components.trend_component
    )
    if total == 0:
        return SourceContributions(**FALLBACK_CONTRIBUTIONS)

    return SourceContributions(
        reddit=components.reddit_component / total,
        competitors=components.competitor_component / total,
        industry_trends=components.trend_component / total,
    )


# ===================================================================== #
#  Overall viability                                                      #
# ===================================================================== #

def _confidence(insights: Sequence[Insight], config: ScoringConfig) -> float:
    """Base 0.5 plus tiered bonuses for data volume, clamped to 1."""
    count = len(insights)
    avg_mentions = sum(i.metrics.mentions_total for i in insights) / count
    avg_competitors = sum(i.metrics.num_competitors_addressing for i in insights) / count

    confidence = 0.5

    if avg_mentions > 20:
        confidence += 0.15
    elif avg_mentions > 10:
        confidence += 0.10
    elif avg_mentions > 5:
        confidence += 0.05

    if avg_competitors > 3:
        confidence += 0.15
    elif avg_competitors > 1:
        confidence += 0.10
    elif avg_competitors > 0:
        confidence += 0.05

    if count >= config.insights.max_insights:
        confidence += 0.10
    elif count >= config.insights.min_insights:
        confidence += 0.05

    return min(1.0, confidence)


def _viability_notes(score: float, high_risk: int, medium_risk: int, total: int) -> str:
    if score > 0.7:
        category = "high"
    elif score > 0.4:
        category = "moderate"
    else:
        category = "low"

    if high_risk > 0:
        risk_summary = f"{high_risk} high-risk factor{'s' if high_risk > 1 else ''} identified"
    elif medium_risk > 0:
        risk_summary = f"{medium_risk} medium-risk factor{'s' if medium_risk > 1 else ''} noted"
    else:
        risk_summary = "minimal risk factors detected"

    return (
        f"Viability score: {category} ({score:.2f}). "
        f"Based on {total} insight{'s' if total > 1 else ''}, {risk_summary}."
    )


def compute_overall_viability(
    insights: Sequence[Insight],
    config: Optional[ScoringConfig] = None,
) -> OverallViability:
    """Aggregate viability from the top-N insights minus a risk penalty.

    Parameters
    ----------
    insights : sequence of Insight
        Scored insights; order only matters for breaking score ties.
    config : ScoringConfig, optional
        Defaults to the constants in ``constants.py``.

    Returns
    -------
    OverallViability
        ``score`` and ``confidence`` in [0, 1] plus a human-readable note.
    """
    if not insights:
        return OverallViability(score=0.0, confidence=0.0, notes=NO_INSIGHTS_NOTE)

    cfg = _config(config)
    ranked = _sorted_by_score(insights)
    top_n = min(cfg.insights.top_insights_for_viability, len(ranked))
    top = ranked[:top_n]

    base_score = sum(i.score for i in top) / top_n

    high_risk = sum(1 for i in top if i.risk_level == "high")
    medium_risk = sum(1 for i in top if i.risk_level == "medium")
    risk_penalty = high_risk * HIGH_RISK_PENALTY + medium_risk * MEDIUM_RISK_PENALTY

    final_score = _clamp(base_score - risk_penalty)

    return OverallViability(
        score=final_score,
        confidence=_confidence(insights, cfg),
        notes=_viability_notes(final_score, high_risk, medium_risk, len(insights)),
    )


# ===================================================================== #
#  Utilities                                                              #
# ===================================================================== #

def find_max_mentions(mention_counts: Sequence[float]) -> float:
    """Largest count, or 1 for an empty sequence so callers can divide by it."""
    if not mention_counts:
        return 1
    return max(mention_counts)


def calculate_average_score(insights: Sequence[Insight]) -> float:
    if not insights:
        return 0.0
    return sum(i.score for i in insights) / len(insights)


def filter_insights_by_threshold(
    insights: Sequence[Insight],
    config: Optional[ScoringConfig] = None,
) -> list[Insight]:
    """Keep insights scoring at least ``min_score_threshold``."""
    threshold = _config(config).insights.min_score_threshold
    return [i for i in insights if i.score >= threshold]


def limit_insights(
    insights: Sequence[Insight],
    config: Optional[ScoringConfig] = None,
) -> list[Insight]:
    """At most ``max_insights``, keeping the highest scored ones."""
    max_insights = _config(config).insights.max_insights
    if len(insights) <= max_insights:
        return list(insights)
    return _sorted_by_score(insights)[:max_insights]
