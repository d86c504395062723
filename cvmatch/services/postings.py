import uuid
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from cvmatch.config import Settings, get_settings
from cvmatch.models.schemas import Application, Posting
from cvmatch.models.weights import WeightPair
from cvmatch.services.stores import ApplicationStore, DocumentStore, PostingStore
from cvmatch.services.tasks import MatchTaskQueue
from cvmatch.utils.exceptions import NotFoundError, ValidationError
from cvmatch.utils.logging_config import get_logger

logger = get_logger(__name__)


class PostingService:
    def __init__(
        self,
        store: PostingStore,
        tasks: Optional[MatchTaskQueue] = None,
        settings: Settings = None,
        documents: Optional[DocumentStore] = None,
        applications: Optional[ApplicationStore] = None,
    ):
        self.store = store
        self.tasks = tasks
        self.documents = documents
        self.applications = applications
        self.settings = settings or get_settings()

    def _weights(self, technical_weight) -> WeightPair:
        if technical_weight is None:
            technical_weight = self.settings.matching.technical_weight
        try:
            return WeightPair.from_technical(int(technical_weight))
        except (TypeError, ValueError, PydanticValidationError) as e:
            raise ValidationError(
                "technical_weight must be an integer between 0 and 100",
                field="technical_weight", value=technical_weight, cause=e,
            ) from e

    async def create(self, owner_id: str, data: dict) -> Posting:
        """Create an active posting and schedule matching against every active CV"""
        data = dict(data)
        weights = data.pop("matching_weights", None)
        technical = data.pop("technical_weight", None)
        if technical is None and weights:
            technical = weights.get("technical_weight") if isinstance(weights, dict) else weights.technical_weight

        try:
            posting = Posting(
                posting_id=str(uuid.uuid4()),
                owner_id=owner_id,
                matching_weights=self._weights(technical),
                **data,
            )
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid posting: {e}", cause=e) from e

        await self.store.insert(posting)
        logger.info(
            f"Created posting {posting.posting_id} '{posting.title}' with weights "
            f"{posting.matching_weights.technical_weight}/{posting.matching_weights.hr_weight}"
        )
        if self.tasks is not None and posting.status == "active":
            self.tasks.submit_posting(posting.posting_id)
        return posting

    async def update_weights(self, posting_id: str, technical_weight: int) -> Posting:
        """Store a new weight pair and re-score every active CV against the posting"""
        weights = self._weights(technical_weight)
        posting = await self.store.update(posting_id, {"matching_weights": weights.dict()})
        if posting is None:
            raise NotFoundError("Posting", posting_id)

        logger.info(f"Posting {posting_id} weights now {weights.technical_weight}/{weights.hr_weight}")
        if self.tasks is not None:
            self.tasks.submit_posting(posting_id, reanalyze=True)
        return posting

    async def archive(self, posting_id: str) -> Posting:
        posting = await self.store.set_status(posting_id, "archived")
        if posting is None:
            raise NotFoundError("Posting", posting_id)
        logger.info(f"Archived posting {posting_id}")
        return posting

    async def apply(
        self,
        posting_id: str,
        applicant_id: str,
        document_id: str,
        cover_letter: str = None,
    ) -> Application:
        """Record a candidate's application to a posting with one of their CVs"""
        posting = await self.store.get(posting_id)
        if posting is None:
            raise NotFoundError("Posting", posting_id)
        if posting.status != "active":
            raise ValidationError(
                f"Posting {posting_id} is not accepting applications",
                field="status", value=posting.status,
            )

        document = await self.documents.get(document_id, applicant_id)
        if document is None or not document.is_active:
            raise NotFoundError("Document", document_id)

        application = Application(
            application_id=str(uuid.uuid4()),
            posting_id=posting_id,
            document_id=document_id,
            applicant_id=applicant_id,
            cover_letter=cover_letter,
        )
        # a duplicate (posting, applicant) pair raises before the counter moves
        await self.applications.insert(application)
        await self.store.increment_applications(posting_id)

        logger.info(f"Applicant {applicant_id} applied to posting {posting_id} with document {document_id}")
        return application
