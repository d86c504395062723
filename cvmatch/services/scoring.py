"""
Composite scoring and the validate-and-default functions for oracle replies.

The engine, not the oracle, is the authority for composites: category
composites are recomputed from the four sub-scores when all of them are
present, and final_score is always recomputed from the composites and the
weight pair captured at match time.
"""
import uuid
from typing import Iterable, List, Optional

from cvmatch.models.scorecard import (
    HR_FIELDS,
    TECHNICAL_FIELDS,
    AnalysisReport,
    Degraded,
    OracleScorecard,
    Recommendation,
    Scorecard,
    Valid,
    Validation,
)
from cvmatch.models.weights import WeightPair

INTERVIEW_MIN = 75.0
TECHNICAL_REVIEW_MIN = 50.0

# batch analysis backfill
DEFAULT_MATCH_SCORE = 70.0
DEFAULT_TECHNICAL_SCORE = 70.0
DEFAULT_HR_SCORE = 65.0
DEFAULT_COMMENTARY = "No commentary was provided by the scoring model."

# batch analysis when the oracle fails
DEGRADED_SCORE = 50.0
MANUAL_REVIEW = "Automatic analysis failed - manual review required"


def category_mean(values: Iterable[float]) -> float:
    values = list(values)
    if not values:
        raise ValueError("cannot average an empty category")
    return round(sum(values) / len(values), 2)


def weighted_final_score(technical: float, hr: float, weights: WeightPair) -> float:
    return round((technical * weights.technical_weight + hr * weights.hr_weight) / 100, 2)


def recommendation_for(final_score: float) -> Recommendation:
    if final_score >= INTERVIEW_MIN:
        return Recommendation.INTERVIEW
    if final_score >= TECHNICAL_REVIEW_MIN:
        return Recommendation.NEEDS_TECHNICAL_REVIEW
    return Recommendation.NOT_SUITABLE


def _composite(raw: OracleScorecard, fields, reported: Optional[float]) -> Optional[float]:
    scores = raw.sub_scores(fields)
    if all(s is not None for s in scores):
        return category_mean(scores)
    return reported


def validate_scorecard(
    raw: OracleScorecard,
    weights: WeightPair,
    document_id: str,
    posting_id: Optional[str],
    **identity,
) -> Validation:
    """Canonical match contract. Degraded means no composite could be derived."""
    technical = _composite(raw, TECHNICAL_FIELDS, raw.final_technical_score)
    hr = _composite(raw, HR_FIELDS, raw.final_hr_score)

    missing = []
    if technical is None:
        missing.append("final_technical_score")
    if hr is None:
        missing.append("final_hr_score")
    if missing:
        return Degraded(value=raw, reason=f"cannot derive {', '.join(missing)} from oracle reply")

    final = weighted_final_score(technical, hr, weights)
    scorecard = Scorecard(
        scorecard_id=str(uuid.uuid4()),
        document_id=document_id,
        posting_id=posting_id,
        **{f: getattr(raw, f) for f in TECHNICAL_FIELDS + HR_FIELDS},
        final_technical_score=technical,
        final_hr_score=hr,
        final_score=final,
        language_level_score=raw.language_level_score,
        general_recommendation=raw.general_recommendation or recommendation_for(final),
        strengths=raw.strengths,
        weaknesses=raw.weaknesses,
        ai_commentary=raw.ai_commentary or "",
        weighting_used=weights,
        **identity,
    )
    return Valid(value=scorecard)


def validate_analysis(raw: OracleScorecard, **identity) -> Validation:
    """Batch analysis contract: missing required fields are backfilled, never fatal"""
    missing: List[str] = []

    def pick(name, value, default):
        if value is None or value == "":
            missing.append(name)
            return default
        return value

    report = AnalysisReport(
        match_score=pick("final_score", raw.final_score, DEFAULT_MATCH_SCORE),
        final_technical_score=pick("final_technical_score", raw.final_technical_score, DEFAULT_TECHNICAL_SCORE),
        final_hr_score=pick("final_hr_score", raw.final_hr_score, DEFAULT_HR_SCORE),
        ai_commentary=pick("ai_commentary", raw.ai_commentary, DEFAULT_COMMENTARY),
        general_recommendation=(raw.general_recommendation or recommendation_for(raw.final_score or DEFAULT_MATCH_SCORE)).value,
        strengths=raw.strengths,
        weaknesses=raw.weaknesses,
        skills=raw.skills,
        **identity,
    )
    if missing:
        return Degraded(value=report, reason=f"backfilled {', '.join(missing)}")
    return Valid(value=report)


def failed_analysis(message: str, **identity) -> AnalysisReport:
    return AnalysisReport(
        match_score=DEGRADED_SCORE,
        final_technical_score=DEGRADED_SCORE,
        final_hr_score=DEGRADED_SCORE,
        ai_commentary="",
        general_recommendation=MANUAL_REVIEW,
        error=True,
        error_message=message or "Unknown scoring failure",
        **identity,
    )
