"""
Match orchestration: single-pair matching and one-to-many fan-out
"""
import asyncio
from typing import Awaitable, Callable, Iterable, List, Optional, get_args

from cvmatch.config import Settings, get_settings
from cvmatch.models.schemas import CandidateDocument, Posting
from cvmatch.models.scorecard import Degraded, Scorecard, ScorecardStatus
from cvmatch.models.weights import WeightPair
from cvmatch.services.oracle import ScoringOracle
from cvmatch.services.scoring import validate_scorecard
from cvmatch.services.stores import DocumentStore, PostingStore, ScorecardStore
from cvmatch.utils.exceptions import (
    EmptyContentError,
    NotFoundError,
    OracleMalformedResponseError,
    OracleTransportError,
    ValidationError,
    retry_with_logging,
)
from cvmatch.utils.logging_config import PerformanceMonitor, get_logger

logger = get_logger(__name__)


class MatchOrchestrator:
    def __init__(
        self,
        documents: DocumentStore,
        postings: PostingStore,
        scorecards: ScorecardStore,
        oracle: ScoringOracle,
        settings: Settings = None,
    ):
        self.documents = documents
        self.postings = postings
        self.scorecards = scorecards
        self.oracle = oracle
        self.settings = settings or get_settings()
        self._score = retry_with_logging(
            max_attempts=self.settings.processing.retry_attempts,
            backoff_factor=self.settings.processing.retry_backoff,
            exceptions=(OracleTransportError,),
            logger=logger,
        )(self.oracle.ascore)

    def weights_for(self, posting: Posting) -> WeightPair:
        return WeightPair.resolve(posting.matching_weights, self.settings.matching.technical_weight)

    async def _load_pair(self, document_id: str, posting_id: str):
        document = await self.documents.get(document_id)
        if document is None:
            raise NotFoundError("Document", document_id)
        posting = await self.postings.get(posting_id)
        if posting is None:
            raise NotFoundError("Posting", posting_id)
        return document, posting

    async def _evaluate(self, document: CandidateDocument, posting: Posting) -> Scorecard:
        if not document.has_content:
            raise EmptyContentError(document.document_id)

        weights = self.weights_for(posting)
        raw = await self._score(document.content, posting, weights)

        result = validate_scorecard(
            raw,
            weights,
            document_id=document.document_id,
            posting_id=posting.posting_id,
            candidate_id=document.owner_id,
            employer_id=posting.owner_id,
        )
        if isinstance(result, Degraded):
            raise OracleMalformedResponseError(result.reason, model_name=self.oracle.settings.model_name)
        return result.value

    async def match_one(self, document_id: str, posting_id: str, reanalyze: bool = False) -> Scorecard:
        """Score one (document, posting) pair, reusing the stored scorecard when there is one.

        With ``reanalyze`` the pair is scored again and the new scorecard supersedes
        the stored one.
        """
        document, posting = await self._load_pair(document_id, posting_id)

        if not reanalyze:
            existing = await self.scorecards.get(document_id, posting_id)
            if existing is not None:
                logger.debug(f"Reusing scorecard {existing.scorecard_id} for {document_id}/{posting_id}")
                return existing

        scorecard = await self._evaluate(document, posting)

        if reanalyze:
            stored = await self.scorecards.supersede(scorecard)
            logger.info(f"Re-analyzed {document_id}/{posting_id}: {stored.final_score} (revision {stored.revision})")
            return stored

        stored, created = await self.scorecards.insert_or_fetch(scorecard)
        if created:
            logger.info(f"Matched {document_id}/{posting_id}: {stored.final_score}")
        else:
            logger.info(f"Scorecard for {document_id}/{posting_id} was stored concurrently; using it")
        return stored

    async def set_status(self, document_id: str, posting_id: str, status: str) -> Scorecard:
        """Move a stored match through the employer workflow"""
        allowed = get_args(ScorecardStatus)
        if status not in allowed:
            raise ValidationError(
                f"Scorecard status must be one of {', '.join(allowed)}", field="status", value=status
            )
        scorecard = await self.scorecards.set_status(document_id, posting_id, status)
        if scorecard is None:
            raise NotFoundError("Scorecard", f"{document_id}/{posting_id}")
        logger.info(f"Scorecard {document_id}/{posting_id} marked {status}")
        return scorecard

    async def _fan_out(self, label: str, ids: Iterable[str], match: Callable[[str], Awaitable[Scorecard]]) -> List[Scorecard]:
        ids = list(ids)
        semaphore = asyncio.Semaphore(self.settings.processing.max_concurrent)

        async def guarded(item_id: str) -> Optional[Scorecard]:
            async with semaphore:
                try:
                    return await match(item_id)
                except Exception as e:
                    logger.warning(f"{label}: match against {item_id} failed: {e}")
                    return None

        with PerformanceMonitor(f"{label} ({len(ids)} items)", logger, threshold_ms=30000):
            results = await asyncio.gather(*(guarded(i) for i in ids))

        matched = [r for r in results if r is not None]
        logger.info(f"{label}: {len(matched)}/{len(ids)} matched")
        return matched

    async def match_document_against_all_postings(self, document_id: str, reanalyze: bool = False) -> List[Scorecard]:
        if await self.documents.get(document_id) is None:
            raise NotFoundError("Document", document_id)
        postings = await self.postings.list_by_status("active")
        return await self._fan_out(
            f"document {document_id}",
            [p.posting_id for p in postings],
            lambda posting_id: self.match_one(document_id, posting_id, reanalyze=reanalyze),
        )

    async def match_posting_against_all_documents(self, posting_id: str, reanalyze: bool = False) -> List[Scorecard]:
        if await self.postings.get(posting_id) is None:
            raise NotFoundError("Posting", posting_id)
        documents = await self.documents.list_active()
        return await self._fan_out(
            f"posting {posting_id}",
            [d.document_id for d in documents],
            lambda document_id: self.match_one(document_id, posting_id, reanalyze=reanalyze),
        )
