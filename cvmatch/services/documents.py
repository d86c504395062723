"""
CV lifecycle: registration, primary-document bookkeeping, soft delete and
lazy content back-fill.
"""
import uuid
from typing import Callable, Optional

from cvmatch.config import Settings, get_settings
from cvmatch.helpers.parsing import extract_text
from cvmatch.models.schemas import CandidateDocument
from cvmatch.models.scorecard import Degraded, Scorecard
from cvmatch.models.weights import WeightPair
from cvmatch.services.oracle import ScoringOracle
from cvmatch.services.scoring import validate_scorecard
from cvmatch.services.stores import DocumentStore
from cvmatch.services.tasks import MatchTaskQueue
from cvmatch.utils.exceptions import (
    EmptyContentError,
    NotFoundError,
    OracleMalformedResponseError,
    ValidationError,
)
from cvmatch.utils.logging_config import get_logger

logger = get_logger(__name__)


class DocumentService:
    def __init__(
        self,
        store: DocumentStore,
        oracle: ScoringOracle,
        tasks: Optional[MatchTaskQueue] = None,
        extractor: Callable[[str, Optional[str]], str] = extract_text,
        settings: Settings = None,
    ):
        self.store = store
        self.oracle = oracle
        self.tasks = tasks
        self.extractor = extractor
        self.settings = settings or get_settings()

    async def _get_owned(self, document_id: str, owner_id: str) -> CandidateDocument:
        document = await self.store.get(document_id, owner_id)
        if document is None:
            raise NotFoundError("Document", document_id)
        return document

    async def register(
        self,
        owner_id: str,
        title: str = None,
        content: str = "",
        file_path: str = None,
        file_type: str = None,
        filename: str = None,
    ) -> CandidateDocument:
        """Store a newly uploaded CV; an owner's first CV becomes primary"""
        count = await self.store.count_by_owner(owner_id)
        document = CandidateDocument(
            document_id=str(uuid.uuid4()),
            owner_id=owner_id,
            title=title or f"CV {count + 1}",
            filename=filename,
            file_path=file_path,
            file_type=file_type,
            content=content or "",
            is_primary=False,
        )
        await self.store.insert(document)

        # the first active CV takes the primary pointer
        document.is_primary = await self.store.claim_primary(owner_id, document.document_id)

        logger.info(f"Registered document {document.document_id} for owner {owner_id} (primary={document.is_primary})")
        if self.tasks is not None and document.has_content:
            self.tasks.submit_document(document.document_id)
        elif self.tasks is not None:
            logger.info(f"Document {document.document_id} has no text yet; matching not scheduled")
        return document

    async def update(self, document_id: str, owner_id: str, fields: dict) -> CandidateDocument:
        """Update title and/or primary flag; other fields are ignored"""
        document = await self._get_owned(document_id, owner_id)
        if not document.is_active:
            raise ValidationError("Inactive documents cannot be updated", field="is_active", value=False)

        if "title" in fields:
            await self.store.update_fields(document_id, owner_id, {"title": fields["title"]})

        if fields.get("is_primary") is True:
            await self.store.set_primary(owner_id, document_id)
        elif fields.get("is_primary") is False and document.is_primary:
            # an owner with active documents always keeps exactly one primary
            logger.info(f"Ignoring request to clear primary flag on {document_id}; promote another CV instead")

        return await self._get_owned(document_id, owner_id)

    async def set_primary(self, document_id: str, owner_id: str) -> CandidateDocument:
        return await self.update(document_id, owner_id, {"is_primary": True})

    async def deactivate(self, document_id: str, owner_id: str) -> Optional[str]:
        """Soft delete a CV; returns the id of the CV promoted to primary, if any"""
        await self._get_owned(document_id, owner_id)
        promoted = await self.store.deactivate(document_id, owner_id)
        logger.info(f"Deactivated document {document_id}" + (f", promoted {promoted}" if promoted else ""))
        return promoted

    async def ensure_content(self, document: CandidateDocument) -> CandidateDocument:
        """Back-fill missing CV text from the stored file"""
        if document.has_content:
            return document
        if not document.file_path:
            raise EmptyContentError(document.document_id)

        text = self.extractor(document.file_path, document.file_type)
        if not text:
            raise EmptyContentError(document.document_id)
        await self.store.set_content(document.document_id, text)
        document.content = text
        logger.info(f"Back-filled {len(text)} chars of content for document {document.document_id}")
        return document

    async def analyze_document(self, document_id: str) -> Scorecard:
        """General evaluation of a CV without a posting, stored as the CV's latest analysis"""
        document = await self.store.get(document_id)
        if document is None:
            raise NotFoundError("Document", document_id)
        document = await self.ensure_content(document)

        weights = WeightPair.resolve(None, self.settings.matching.technical_weight)
        raw = await self.oracle.ascore(document.content, None, weights)
        result = validate_scorecard(raw, weights, document_id=document_id, posting_id=None, candidate_id=document.owner_id)
        if isinstance(result, Degraded):
            raise OracleMalformedResponseError(result.reason, model_name=self.oracle.settings.model_name)

        await self.store.set_analysis(document_id, result.value)
        return result.value
