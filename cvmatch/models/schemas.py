from pydantic import BaseModel, Field
from typing import List, Optional, Literal
from datetime import datetime

from cvmatch.models.scorecard import Scorecard, AnalysisReport
from cvmatch.models.weights import WeightPair

EmploymentType = Literal["full-time", "part-time", "contract", "internship", "remote"]
ExperienceLevel = Literal["entry", "mid-level", "senior", "executive"]
PostingStatus = Literal["draft", "active", "closed", "archived"]


# -------- Candidate documents (CVs) --------
class CandidateDocument(BaseModel):
    document_id: str
    owner_id: str
    title: str
    filename: Optional[str] = None
    file_path: Optional[str] = None
    file_type: Optional[str] = None  # pdf, docx, txt
    content: str = ""
    is_primary: bool = False  # derived from the owner's primary pointer, never stored
    is_active: bool = True
    analysis: Optional[Scorecard] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def has_content(self) -> bool:
        return bool(self.content and self.content.strip())


# -------- Postings (jobs) --------
class Posting(BaseModel):
    posting_id: str
    owner_id: str
    title: str
    company: str = ""
    location: str = ""
    description: str = ""
    requirements: List[str] = []
    responsibilities: List[str] = []
    employment_type: Optional[EmploymentType] = None
    experience_level: Optional[ExperienceLevel] = None
    matching_weights: Optional[WeightPair] = None
    application_count: int = 0
    status: PostingStatus = "active"
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


# -------- Applications --------
class Applicant(BaseModel):
    applicant_id: str
    name: Optional[str] = None
    email: Optional[str] = None


class Application(BaseModel):
    application_id: str
    posting_id: str
    document_id: str
    applicant_id: str
    cover_letter: Optional[str] = None
    status: str = "pending"
    applied_at: datetime = Field(default_factory=datetime.utcnow)
    analysis: Optional[AnalysisReport] = None

    # populated by ApplicationStore.list_for_posting
    document: Optional[CandidateDocument] = None
    applicant: Optional[Applicant] = None
