from pydantic import BaseModel
from typing import Optional

from cvmatch.models.schemas import CandidateDocument, Posting
from cvmatch.models.scorecard import Scorecard


class RankedPosting(BaseModel):
    posting_id: str
    posting: Optional[Posting] = None
    match_score: Optional[float] = None
    scorecard: Optional[Scorecard] = None
    is_recommended: bool = False  # suggested because no match exists yet


class RankedDocument(BaseModel):
    document_id: str
    document: Optional[CandidateDocument] = None
    match_score: float
    scorecard: Scorecard
