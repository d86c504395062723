import asyncio
import threading
import uuid
from datetime import datetime, timedelta

import pytest

from cvmatch.config import MatchingDefaults, OracleSettings, ProcessingSettings, Settings
from cvmatch.models.schemas import Applicant, Application, CandidateDocument, Posting
from cvmatch.models.scorecard import OracleScorecard
from cvmatch.services.oracle import ScoringOracle
from cvmatch.utils.exceptions import ValidationError


class FakeScorecardStore:
    """In-memory ScorecardStore keyed by (document_id, posting_id)"""

    def __init__(self):
        self.records = {}
        self.conflicts = 0

    async def get(self, document_id, posting_id):
        return self.records.get((document_id, posting_id))

    async def insert_or_fetch(self, scorecard):
        key = (scorecard.document_id, scorecard.posting_id)
        await asyncio.sleep(0)
        if key in self.records:
            self.conflicts += 1
            return self.records[key], False
        self.records[key] = scorecard
        return scorecard, True

    async def supersede(self, scorecard):
        key = (scorecard.document_id, scorecard.posting_id)
        previous = self.records.get(key)
        update = {"revision": previous.revision + 1, "status": previous.status} if previous else {"revision": 1}
        stored = scorecard.copy(update=update)
        self.records[key] = stored
        return stored

    async def set_status(self, document_id, posting_id, status):
        key = (document_id, posting_id)
        if key not in self.records:
            return None
        self.records[key] = self.records[key].copy(update={"status": status})
        return self.records[key]

    async def top_for_document(self, document_id, limit):
        found = [sc for (d, _), sc in self.records.items() if d == document_id]
        return sorted(found, key=lambda sc: sc.final_score, reverse=True)[:limit]

    async def top_for_posting(self, posting_id, limit):
        found = [sc for (_, p), sc in self.records.items() if p == posting_id]
        return sorted(found, key=lambda sc: sc.final_score, reverse=True)[:limit]


class FakeDocumentStore:
    """In-memory DocumentStore; the primary is one pointer per owner, mirrored onto the documents"""

    def __init__(self, documents=()):
        self.documents = {d.document_id: d for d in documents}
        self.primaries = {d.owner_id: d.document_id for d in documents if d.is_primary and d.is_active}
        self.contents_set = []
        self._sync()

    def _sync(self):
        for doc in self.documents.values():
            doc.is_primary = doc.is_active and self.primaries.get(doc.owner_id) == doc.document_id

    async def get(self, document_id, owner_id=None):
        doc = self.documents.get(document_id)
        if doc is None or (owner_id and doc.owner_id != owner_id):
            return None
        return doc.copy()

    async def list_by_owner(self, owner_id, active_only=True):
        docs = [d for d in self.documents.values() if d.owner_id == owner_id and (d.is_active or not active_only)]
        return sorted(docs, key=lambda d: d.created_at, reverse=True)

    async def list_active(self):
        return [d for d in self.documents.values() if d.is_active]

    async def count_by_owner(self, owner_id):
        return sum(1 for d in self.documents.values() if d.owner_id == owner_id)

    async def insert(self, document):
        self.documents[document.document_id] = document.copy(update={"is_primary": False})
        return document

    async def update_fields(self, document_id, owner_id, fields):
        doc = self.documents[document_id]
        if "title" in fields:
            doc.title = fields["title"]
        return 1

    async def set_content(self, document_id, content):
        self.documents[document_id].content = content
        self.contents_set.append(document_id)

    async def set_analysis(self, document_id, scorecard):
        self.documents[document_id].analysis = scorecard

    async def claim_primary(self, owner_id, document_id):
        if self.primaries.get(owner_id) is not None:
            return False
        self.primaries[owner_id] = document_id
        self._sync()
        return True

    async def set_primary(self, owner_id, document_id):
        self.primaries[owner_id] = document_id
        self._sync()

    async def deactivate(self, document_id, owner_id):
        doc = self.documents.get(document_id)
        if doc is None or doc.owner_id != owner_id:
            return None
        promoted = None
        if self.primaries.get(owner_id) == document_id:
            remaining = [d for d in await self.list_by_owner(owner_id) if d.document_id != document_id]
            promoted = remaining[0].document_id if remaining else None
            self.primaries[owner_id] = promoted
        doc.is_active = False
        self._sync()
        return promoted


class FakePostingStore:
    def __init__(self, postings=()):
        self.postings = {p.posting_id: p for p in postings}

    async def get(self, posting_id):
        p = self.postings.get(posting_id)
        return p.copy() if p else None

    async def get_many(self, posting_ids):
        return {pid: self.postings[pid] for pid in posting_ids if pid in self.postings}

    async def list_by_status(self, status="active"):
        return [p for p in self.postings.values() if p.status == status]

    async def list_by_owner(self, owner_id):
        return [p for p in self.postings.values() if p.owner_id == owner_id]

    async def recent_active(self, exclude_ids, limit):
        exclude = set(exclude_ids)
        fresh = [p for p in self.postings.values() if p.status == "active" and p.posting_id not in exclude]
        return sorted(fresh, key=lambda p: p.created_at, reverse=True)[:limit]

    async def insert(self, posting):
        self.postings[posting.posting_id] = posting
        return posting

    async def update(self, posting_id, fields):
        posting = self.postings.get(posting_id)
        if posting is None:
            return None
        posting = Posting(**{**posting.dict(), **fields})
        self.postings[posting_id] = posting
        return posting

    async def set_status(self, posting_id, status):
        return await self.update(posting_id, {"status": status})

    async def increment_applications(self, posting_id):
        posting = self.postings[posting_id]
        self.postings[posting_id] = posting.copy(update={"application_count": posting.application_count + 1})


class FakeApplicationStore:
    def __init__(self, applications=()):
        self.applications = list(applications)
        self.attached = {}

    async def insert(self, application):
        if any(a.posting_id == application.posting_id and a.applicant_id == application.applicant_id
               for a in self.applications):
            raise ValidationError("already applied", field="posting_id", value=application.posting_id)
        self.applications.append(application)
        return application

    async def list_for_posting(self, posting_id):
        return [a for a in self.applications if a.posting_id == posting_id]

    async def attach_analysis(self, application_id, report):
        self.attached[application_id] = report


class FakeOracle(ScoringOracle):
    """Scores from a responder instead of an Ollama server.

    ``responder(document_text, posting, weights)`` returns an OracleScorecard,
    a dict of fields, or raises.
    """

    def __init__(self, responder=None):
        super().__init__(OracleSettings(model_name="fake-model"))
        self.responder = responder or (lambda text, posting, weights: good_reply())
        self.calls = []
        self._lock = threading.Lock()

    def score(self, document_text, posting, weights):
        with self._lock:
            self.calls.append((document_text, posting.posting_id if posting else None, weights))
        reply = self.responder(document_text, posting, weights)
        if isinstance(reply, dict):
            reply = OracleScorecard(**reply)
        return reply


def good_reply(technical=75.0, hr=100.0, **overrides):
    """Oracle reply whose sub-scores average to the given composites"""
    reply = {
        "technical_skills_score": technical,
        "project_experience_score": technical,
        "problem_solving_score": technical,
        "learning_agility_score": technical,
        "communication_score": hr,
        "teamwork_score": hr,
        "motivation_score": hr,
        "adaptability_score": hr,
        "final_technical_score": technical,
        "final_hr_score": hr,
        "final_score": 0,
        "general_recommendation": "interview",
        "strengths": ["Python"],
        "weaknesses": ["Kubernetes"],
        "ai_commentary": "Solid backend profile.",
    }
    reply.update(overrides)
    return reply


def make_document(owner_id="cand-1", content="Python developer with FastAPI and MongoDB experience", **kwargs):
    fields = {
        "document_id": str(uuid.uuid4()),
        "owner_id": owner_id,
        "title": "CV",
        "content": content,
        "is_primary": False,
    }
    fields.update(kwargs)
    return CandidateDocument(**fields)


def make_posting(owner_id="emp-1", created_offset=0, **kwargs):
    fields = {
        "posting_id": str(uuid.uuid4()),
        "owner_id": owner_id,
        "title": "Backend Engineer",
        "company": "Acme",
        "requirements": ["Python", "MongoDB"],
        "created_at": datetime.utcnow() - timedelta(minutes=created_offset),
    }
    fields.update(kwargs)
    return Posting(**fields)


def make_application(posting, document, name="Jane Doe", email="jane@example.com"):
    return Application(
        application_id=str(uuid.uuid4()),
        posting_id=posting.posting_id,
        document_id=document.document_id,
        applicant_id=document.owner_id,
        document=document,
        applicant=Applicant(applicant_id=document.owner_id, name=name, email=email),
    )


@pytest.fixture
def settings():
    return Settings(
        processing=ProcessingSettings(max_concurrent=2, retry_attempts=2, retry_backoff=0.0),
        matching=MatchingDefaults(technical_weight=70),
    )


@pytest.fixture
def scorecards():
    return FakeScorecardStore()
