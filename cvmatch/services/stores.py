"""
Mongo-backed stores for documents, postings, scorecards and applications.

Every read uses a {"_id": 0} projection; records are keyed by their own
string ids. Driver failures surface as DatabaseError.
"""
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from cvmatch.models.schemas import Applicant, Application, CandidateDocument, Posting
from cvmatch.models.scorecard import AnalysisReport, Scorecard, ScorecardStatus
from cvmatch.services.db import APPLICATIONS, DOCUMENT_OWNERS, DOCUMENTS, POSTINGS, SCORECARDS, USERS
from cvmatch.utils.exceptions import ConflictOnInsert, DatabaseError, ExceptionContext, ValidationError
from cvmatch.utils.logging_config import get_logger

logger = get_logger(__name__)

NO_ID = {"_id": 0}


class ScorecardStore:
    """At most one scorecard per (document, posting) pair"""

    def __init__(self, collection):
        self.coll = collection

    @staticmethod
    def _key(document_id: str, posting_id: str) -> dict:
        return {"document_id": document_id, "posting_id": posting_id}

    async def get(self, document_id: str, posting_id: str) -> Optional[Scorecard]:
        with ExceptionContext("get scorecard", logger, collection=SCORECARDS):
            doc = await self.coll.find_one(self._key(document_id, posting_id), NO_ID)
        return Scorecard(**doc) if doc else None

    async def _upsert(self, scorecard: Scorecard) -> Optional[dict]:
        key = self._key(scorecard.document_id, scorecard.posting_id)
        record = {k: v for k, v in scorecard.dict().items() if k not in key}
        try:
            return await self.coll.find_one_and_update(
                key,
                {"$setOnInsert": record},
                upsert=True,
                projection=NO_ID,
                return_document=ReturnDocument.BEFORE,
            )
        except DuplicateKeyError as e:
            raise ConflictOnInsert(scorecard.document_id, scorecard.posting_id, cause=e) from e

    async def insert_or_fetch(self, scorecard: Scorecard) -> Tuple[Scorecard, bool]:
        """Insert the scorecard unless the pair already has one; returns (stored, created)"""
        with ExceptionContext("insert scorecard", logger, collection=SCORECARDS):
            try:
                existing = await self._upsert(scorecard)
            except ConflictOnInsert:
                logger.info(
                    f"Concurrent insert for document {scorecard.document_id} / posting "
                    f"{scorecard.posting_id}, reading back the stored scorecard"
                )
                existing = await self.coll.find_one(self._key(scorecard.document_id, scorecard.posting_id), NO_ID)
                if existing is None:
                    raise DatabaseError(
                        "Scorecard insert conflicted but no record was found",
                        operation="insert_or_fetch", collection=SCORECARDS,
                    )

        if existing is None:
            return scorecard, True
        return Scorecard(**existing), False

    async def supersede(self, scorecard: Scorecard) -> Scorecard:
        """Replace the pair's scorecard with a fresh evaluation, bumping its revision"""
        key = self._key(scorecard.document_id, scorecard.posting_id)
        # revision is bumped; status stays as the employer left it
        fields = {k: v for k, v in scorecard.dict().items() if k not in key and k not in ("revision", "status")}
        update = {"$set": fields, "$inc": {"revision": 1}}
        with ExceptionContext("supersede scorecard", logger, collection=SCORECARDS):
            try:
                doc = await self.coll.find_one_and_update(
                    key, update, upsert=True, projection=NO_ID, return_document=ReturnDocument.AFTER,
                )
            except DuplicateKeyError:
                # a first insert for the pair won the upsert; overwrite it in place
                logger.info(
                    f"Concurrent insert while superseding {scorecard.document_id} / "
                    f"{scorecard.posting_id}, updating the stored scorecard"
                )
                doc = await self.coll.find_one_and_update(
                    key, update, projection=NO_ID, return_document=ReturnDocument.AFTER,
                )
                if doc is None:
                    raise DatabaseError(
                        "Scorecard supersede conflicted but no record was found",
                        operation="supersede", collection=SCORECARDS,
                    )
        return Scorecard(**doc)

    async def set_status(self, document_id: str, posting_id: str, status: ScorecardStatus) -> Optional[Scorecard]:
        """Record how the employer handled the match (viewed, contacted, ...)"""
        with ExceptionContext("set scorecard status", logger, collection=SCORECARDS):
            doc = await self.coll.find_one_and_update(
                self._key(document_id, posting_id),
                {"$set": {"status": status}},
                projection=NO_ID,
                return_document=ReturnDocument.AFTER,
            )
        return Scorecard(**doc) if doc else None

    async def _top(self, query: dict, limit: int) -> List[Scorecard]:
        with ExceptionContext("rank scorecards", logger, collection=SCORECARDS, **query):
            cursor = self.coll.find(query, NO_ID).sort("final_score", -1).limit(limit)
            docs = await cursor.to_list(length=limit)
        return [Scorecard(**d) for d in docs]

    async def top_for_document(self, document_id: str, limit: int) -> List[Scorecard]:
        return await self._top({"document_id": document_id}, limit)

    async def top_for_posting(self, posting_id: str, limit: int) -> List[Scorecard]:
        return await self._top({"posting_id": posting_id}, limit)


class DocumentStore:
    """CV records plus one primary pointer record per owner.

    The owner's primary CV lives in a single ``document_owners`` record, so
    switching it is one single-document write and an owner never has two
    primaries. ``is_primary`` on a CandidateDocument is filled in on read.
    """

    UPDATABLE_FIELDS = ("title",)

    def __init__(self, collection, owners):
        self.coll = collection
        self.owners = owners

    async def primary_id(self, owner_id: str) -> Optional[str]:
        with ExceptionContext("get primary document", logger, collection=DOCUMENT_OWNERS):
            record = await self.owners.find_one({"owner_id": owner_id}, NO_ID)
        return record.get("primary_document_id") if record else None

    async def _primaries(self, owner_ids: Iterable[str]) -> Dict[str, str]:
        ids = list(set(owner_ids))
        if not ids:
            return {}
        with ExceptionContext("get primary documents", logger, collection=DOCUMENT_OWNERS):
            records = await self.owners.find({"owner_id": {"$in": ids}}, NO_ID).to_list(length=None)
        return {r["owner_id"]: r.get("primary_document_id") for r in records}

    @staticmethod
    def _build(doc: dict, primary_id: Optional[str]) -> CandidateDocument:
        document = CandidateDocument(**doc)
        document.is_primary = document.is_active and document.document_id == primary_id
        return document

    async def get(self, document_id: str, owner_id: str = None) -> Optional[CandidateDocument]:
        query = {"document_id": document_id}
        if owner_id:
            query["owner_id"] = owner_id
        with ExceptionContext("get document", logger, collection=DOCUMENTS):
            doc = await self.coll.find_one(query, NO_ID)
        if not doc:
            return None
        return self._build(doc, await self.primary_id(doc["owner_id"]))

    async def list_by_owner(self, owner_id: str, active_only: bool = True) -> List[CandidateDocument]:
        query = {"owner_id": owner_id}
        if active_only:
            query["is_active"] = True
        with ExceptionContext("list documents by owner", logger, collection=DOCUMENTS):
            docs = await self.coll.find(query, NO_ID).sort("created_at", -1).to_list(length=None)
        primary = await self.primary_id(owner_id)
        return [self._build(d, primary) for d in docs]

    async def list_active(self) -> List[CandidateDocument]:
        with ExceptionContext("list active documents", logger, collection=DOCUMENTS):
            docs = await self.coll.find({"is_active": True}, NO_ID).to_list(length=None)
        primaries = await self._primaries(d["owner_id"] for d in docs)
        return [self._build(d, primaries.get(d["owner_id"])) for d in docs]

    async def count_by_owner(self, owner_id: str) -> int:
        with ExceptionContext("count documents", logger, collection=DOCUMENTS):
            return await self.coll.count_documents({"owner_id": owner_id})

    async def insert(self, document: CandidateDocument) -> CandidateDocument:
        with ExceptionContext("insert document", logger, collection=DOCUMENTS):
            await self.coll.insert_one(document.dict(exclude={"is_primary"}))
        return document

    async def update_fields(self, document_id: str, owner_id: str, fields: dict) -> int:
        allowed = {k: v for k, v in fields.items() if k in self.UPDATABLE_FIELDS}
        ignored = set(fields) - set(allowed)
        if ignored:
            logger.debug(f"Ignoring non-updatable document fields: {sorted(ignored)}")
        if not allowed:
            return 0
        allowed["updated_at"] = datetime.utcnow()
        with ExceptionContext("update document", logger, collection=DOCUMENTS):
            result = await self.coll.update_one(
                {"document_id": document_id, "owner_id": owner_id}, {"$set": allowed}
            )
        return result.modified_count

    async def set_content(self, document_id: str, content: str) -> None:
        with ExceptionContext("set document content", logger, collection=DOCUMENTS):
            await self.coll.update_one(
                {"document_id": document_id},
                {"$set": {"content": content, "updated_at": datetime.utcnow()}},
            )

    async def set_analysis(self, document_id: str, scorecard: Scorecard) -> None:
        with ExceptionContext("set document analysis", logger, collection=DOCUMENTS):
            await self.coll.update_one(
                {"document_id": document_id},
                {"$set": {"analysis": scorecard.dict(), "updated_at": datetime.utcnow()}},
            )

    async def claim_primary(self, owner_id: str, document_id: str) -> bool:
        """Make the document primary only if the owner has no primary yet"""
        with ExceptionContext("claim primary document", logger, collection=DOCUMENT_OWNERS):
            try:
                result = await self.owners.update_one(
                    {"owner_id": owner_id, "primary_document_id": None},
                    {"$set": {"primary_document_id": document_id, "updated_at": datetime.utcnow()}},
                    upsert=True,
                )
            except DuplicateKeyError:
                # the owner record exists and already points at a primary
                return False
        return bool(result.modified_count or result.upserted_id is not None)

    async def set_primary(self, owner_id: str, document_id: str) -> None:
        """Point the owner's primary at the document in one single-document write"""
        with ExceptionContext("set primary document", logger, collection=DOCUMENT_OWNERS):
            await self.owners.update_one(
                {"owner_id": owner_id},
                {"$set": {"primary_document_id": document_id, "updated_at": datetime.utcnow()}},
                upsert=True,
            )

    async def deactivate(self, document_id: str, owner_id: str) -> Optional[str]:
        """Soft delete; a deactivated primary hands over to the newest remaining active document.

        The primary pointer moves before the document is deactivated, so readers
        see either the old or the new primary. Returns the id of the promoted
        document, if any.
        """
        promoted = None
        if await self.primary_id(owner_id) == document_id:
            with ExceptionContext("find successor document", logger, collection=DOCUMENTS):
                successor = await self.coll.find_one(
                    {"owner_id": owner_id, "is_active": True, "document_id": {"$ne": document_id}},
                    NO_ID,
                    sort=[("created_at", -1)],
                )
            successor_id = successor["document_id"] if successor else None
            with ExceptionContext("hand over primary document", logger, collection=DOCUMENT_OWNERS):
                result = await self.owners.update_one(
                    {"owner_id": owner_id, "primary_document_id": document_id},
                    {"$set": {"primary_document_id": successor_id, "updated_at": datetime.utcnow()}},
                )
            if result.modified_count:
                promoted = successor_id

        with ExceptionContext("deactivate document", logger, collection=DOCUMENTS):
            await self.coll.update_one(
                {"document_id": document_id, "owner_id": owner_id},
                {"$set": {"is_active": False, "updated_at": datetime.utcnow()}},
            )
        return promoted


class PostingStore:
    def __init__(self, collection):
        self.coll = collection

    async def get(self, posting_id: str) -> Optional[Posting]:
        with ExceptionContext("get posting", logger, collection=POSTINGS):
            doc = await self.coll.find_one({"posting_id": posting_id}, NO_ID)
        return Posting(**doc) if doc else None

    async def get_many(self, posting_ids: Iterable[str]) -> Dict[str, Posting]:
        ids = list(posting_ids)
        if not ids:
            return {}
        with ExceptionContext("get postings", logger, collection=POSTINGS):
            docs = await self.coll.find({"posting_id": {"$in": ids}}, NO_ID).to_list(length=None)
        return {d["posting_id"]: Posting(**d) for d in docs}

    async def list_by_status(self, status: str = "active") -> List[Posting]:
        with ExceptionContext("list postings by status", logger, collection=POSTINGS):
            docs = await self.coll.find({"status": status}, NO_ID).sort("created_at", -1).to_list(length=None)
        return [Posting(**d) for d in docs]

    async def list_by_owner(self, owner_id: str) -> List[Posting]:
        # issuers see their postings regardless of status
        with ExceptionContext("list postings by owner", logger, collection=POSTINGS):
            docs = await self.coll.find({"owner_id": owner_id}, NO_ID).sort("created_at", -1).to_list(length=None)
        return [Posting(**d) for d in docs]

    async def recent_active(self, exclude_ids: Iterable[str], limit: int) -> List[Posting]:
        if limit <= 0:
            return []
        query = {"status": "active", "posting_id": {"$nin": list(exclude_ids)}}
        with ExceptionContext("list recent postings", logger, collection=POSTINGS):
            docs = await self.coll.find(query, NO_ID).sort("created_at", -1).limit(limit).to_list(length=limit)
        return [Posting(**d) for d in docs]

    async def insert(self, posting: Posting) -> Posting:
        with ExceptionContext("insert posting", logger, collection=POSTINGS):
            await self.coll.insert_one(posting.dict())
        return posting

    async def update(self, posting_id: str, fields: dict) -> Optional[Posting]:
        fields = {**fields, "updated_at": datetime.utcnow()}
        with ExceptionContext("update posting", logger, collection=POSTINGS):
            doc = await self.coll.find_one_and_update(
                {"posting_id": posting_id},
                {"$set": fields},
                projection=NO_ID,
                return_document=ReturnDocument.AFTER,
            )
        return Posting(**doc) if doc else None

    async def set_status(self, posting_id: str, status: str) -> Optional[Posting]:
        return await self.update(posting_id, {"status": status})

    async def increment_applications(self, posting_id: str) -> None:
        with ExceptionContext("count application", logger, collection=POSTINGS):
            await self.coll.update_one({"posting_id": posting_id}, {"$inc": {"application_count": 1}})


class ApplicationStore:
    def __init__(self, collection):
        self.coll = collection

    async def insert(self, application: Application) -> Application:
        """Store a new application; one per (posting, applicant)"""
        record = application.dict(exclude={"document", "applicant", "analysis"})
        with ExceptionContext("insert application", logger, collection=APPLICATIONS):
            try:
                await self.coll.insert_one(record)
            except DuplicateKeyError as e:
                raise ValidationError(
                    f"Applicant {application.applicant_id} already applied to posting {application.posting_id}",
                    field="posting_id", value=application.posting_id, cause=e,
                ) from e
        return application

    async def list_for_posting(self, posting_id: str) -> List[Application]:
        """Applications for a posting with their document and applicant joined in"""
        pipeline = [
            {"$match": {"posting_id": posting_id}},
            {"$lookup": {"from": DOCUMENTS, "localField": "document_id", "foreignField": "document_id", "as": "document"}},
            {"$unwind": {"path": "$document", "preserveNullAndEmptyArrays": True}},
            {"$lookup": {"from": USERS, "localField": "applicant_id", "foreignField": "user_id", "as": "applicant"}},
            {"$unwind": {"path": "$applicant", "preserveNullAndEmptyArrays": True}},
            {"$project": {"_id": 0, "document._id": 0, "applicant._id": 0}},
        ]
        with ExceptionContext("list applications", logger, collection=APPLICATIONS, posting_id=posting_id):
            docs = await self.coll.aggregate(pipeline).to_list(length=None)

        applications = []
        for doc in docs:
            user = doc.pop("applicant", None)
            if user:
                doc["applicant"] = Applicant(
                    applicant_id=user.get("user_id", doc["applicant_id"]),
                    name=user.get("name"),
                    email=user.get("email"),
                )
            applications.append(Application(**doc))
        return applications

    async def attach_analysis(self, application_id: str, report: AnalysisReport) -> None:
        with ExceptionContext("attach analysis", logger, collection=APPLICATIONS, application_id=application_id):
            await self.coll.update_one(
                {"application_id": application_id},
                {"$set": {"analysis": report.dict()}},
            )
