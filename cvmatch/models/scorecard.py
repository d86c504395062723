from pydantic import BaseModel, Field, validator
from typing import Any, List, Literal, Optional, Union
from datetime import datetime
from enum import Enum

from cvmatch.models.weights import WeightPair

TECHNICAL_FIELDS = (
    "technical_skills_score",
    "project_experience_score",
    "problem_solving_score",
    "learning_agility_score",
)
HR_FIELDS = (
    "communication_score",
    "teamwork_score",
    "motivation_score",
    "adaptability_score",
)


class Recommendation(str, Enum):
    INTERVIEW = "interview"
    NEEDS_TECHNICAL_REVIEW = "needs-technical-review"
    NOT_SUITABLE = "not-suitable"


# labels the oracle was originally prompted with (Turkish locale) plus loose English forms
RECOMMENDATION_ALIASES = {
    "görüşmeye çağrılabilir": Recommendation.INTERVIEW,
    "teknik değerlendirilmeli": Recommendation.NEEDS_TECHNICAL_REVIEW,
    "uygun değil": Recommendation.NOT_SUITABLE,
    "interview": Recommendation.INTERVIEW,
    "needs-technical-review": Recommendation.NEEDS_TECHNICAL_REVIEW,
    "technical-review": Recommendation.NEEDS_TECHNICAL_REVIEW,
    "not-suitable": Recommendation.NOT_SUITABLE,
}


def parse_recommendation(value: Any) -> Optional[Recommendation]:
    if value is None or isinstance(value, Recommendation):
        return value
    if not isinstance(value, str):
        raise ValueError(f"recommendation must be a string, got {type(value).__name__}")
    key = value.strip().lower()
    if not key:
        return None
    if key in RECOMMENDATION_ALIASES:
        return RECOMMENDATION_ALIASES[key]
    key = key.replace("_", "-").replace(" ", "-")
    if key in RECOMMENDATION_ALIASES:
        return RECOMMENDATION_ALIASES[key]
    raise ValueError(f"unknown recommendation label: {value!r}")


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        parts = [p.strip() for p in value.replace(";", ",").split(",")]
        return [p for p in parts if p]
    if isinstance(value, list):
        return [str(t).strip() for t in value if str(t).strip()]
    raise ValueError(f"expected a list of strings, got {type(value).__name__}")


Score = Optional[float]
ScorecardStatus = Literal["pending", "viewed", "contacted", "rejected", "archived"]


class OracleScorecard(BaseModel):
    """Scorecard exactly as the oracle reported it; every field may be missing"""
    technical_skills_score: Score = Field(default=None, ge=0, le=100)
    project_experience_score: Score = Field(default=None, ge=0, le=100)
    problem_solving_score: Score = Field(default=None, ge=0, le=100)
    learning_agility_score: Score = Field(default=None, ge=0, le=100)

    communication_score: Score = Field(default=None, ge=0, le=100)
    teamwork_score: Score = Field(default=None, ge=0, le=100)
    motivation_score: Score = Field(default=None, ge=0, le=100)
    adaptability_score: Score = Field(default=None, ge=0, le=100)

    final_technical_score: Score = Field(default=None, ge=0, le=100)
    final_hr_score: Score = Field(default=None, ge=0, le=100)
    final_score: Score = Field(default=None, ge=0, le=100)

    language_level_score: Score = Field(default=None, ge=0, le=100)
    general_recommendation: Optional[Recommendation] = None
    strengths: List[str] = []
    weaknesses: List[str] = []
    ai_commentary: Optional[str] = None
    skills: List[str] = []

    @validator('general_recommendation', pre=True)
    def coerce_recommendation(cls, v):
        return parse_recommendation(v)

    @validator('strengths', 'weaknesses', 'skills', pre=True)
    def coerce_lists(cls, v):
        return _as_list(v)

    def sub_scores(self, fields) -> List[Optional[float]]:
        return [getattr(self, f) for f in fields]


class Scorecard(BaseModel):
    """Persisted result of one oracle evaluation for one (document, posting) pair"""
    scorecard_id: str
    document_id: str
    posting_id: Optional[str] = None  # None for a general document analysis
    candidate_id: Optional[str] = None
    employer_id: Optional[str] = None

    technical_skills_score: Score = None
    project_experience_score: Score = None
    problem_solving_score: Score = None
    learning_agility_score: Score = None

    communication_score: Score = None
    teamwork_score: Score = None
    motivation_score: Score = None
    adaptability_score: Score = None

    final_technical_score: float = Field(ge=0, le=100)
    final_hr_score: float = Field(ge=0, le=100)
    final_score: float = Field(ge=0, le=100)

    language_level_score: Score = None
    general_recommendation: Recommendation
    strengths: List[str] = []
    weaknesses: List[str] = []
    ai_commentary: str = ""

    weighting_used: WeightPair
    revision: int = 1
    status: ScorecardStatus = "pending"
    matched_at: datetime = Field(default_factory=datetime.utcnow)


class AnalysisReport(BaseModel):
    """Best-effort analysis snapshot stored on an application"""
    application_id: str
    document_id: str
    applicant_id: str
    applicant_name: Optional[str] = None
    applicant_email: Optional[str] = None

    match_score: float
    final_technical_score: float
    final_hr_score: float
    ai_commentary: str
    general_recommendation: str
    strengths: List[str] = []
    weaknesses: List[str] = []
    skills: List[str] = []

    error: bool = False
    error_message: Optional[str] = None
    analyzed_at: datetime = Field(default_factory=datetime.utcnow)


# -------- validate-and-default results --------
class Valid(BaseModel):
    value: Any


class Degraded(BaseModel):
    value: Any
    reason: str


Validation = Union[Valid, Degraded]
