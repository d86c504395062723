import asyncio
from typing import Dict, List

from cvmatch.models.response import RankedDocument, RankedPosting
from cvmatch.models.scorecard import Scorecard
from cvmatch.services.stores import DocumentStore, PostingStore, ScorecardStore
from cvmatch.utils.exceptions import NotFoundError
from cvmatch.utils.logging_config import get_logger

logger = get_logger(__name__)


def best_per_posting(scorecards: List[Scorecard]) -> List[Scorecard]:
    """Keep the highest-scoring scorecard per posting; on a tie the first one seen wins"""
    best: Dict[str, Scorecard] = {}
    for sc in scorecards:
        current = best.get(sc.posting_id)
        if current is None or sc.final_score > current.final_score:
            best[sc.posting_id] = sc
    # sorted() is stable, so tied postings keep first-seen order
    return sorted(best.values(), key=lambda sc: sc.final_score, reverse=True)


class RecommendationRanker:
    def __init__(self, documents: DocumentStore, postings: PostingStore, scorecards: ScorecardStore):
        self.documents = documents
        self.postings = postings
        self.scorecards = scorecards

    async def _with_postings(self, scorecards: List[Scorecard]) -> List[RankedPosting]:
        postings = await self.postings.get_many(sc.posting_id for sc in scorecards)
        return [
            RankedPosting(
                posting_id=sc.posting_id,
                posting=postings.get(sc.posting_id),
                match_score=sc.final_score,
                scorecard=sc,
            )
            for sc in scorecards
        ]

    async def top_postings_for_owner(self, owner_id: str, limit: int = 10) -> List[RankedPosting]:
        documents = await self.documents.list_by_owner(owner_id)
        if not documents:
            return []

        per_document = await asyncio.gather(
            *(self.scorecards.top_for_document(d.document_id, limit) for d in documents)
        )
        merged = [sc for batch in per_document for sc in batch if sc.posting_id]
        ranked = best_per_posting(merged)[:limit]
        logger.debug(f"Owner {owner_id}: {len(merged)} scorecards -> {len(ranked)} ranked postings")
        return await self._with_postings(ranked)

    async def recommended_postings_for_owner(self, owner_id: str, limit: int = 10) -> List[RankedPosting]:
        """Top matches, padded with the newest active postings when there are fewer than ``limit``"""
        top = await self.top_postings_for_owner(owner_id, limit)
        if len(top) >= limit:
            return top

        fresh = await self.postings.recent_active(
            exclude_ids=[r.posting_id for r in top], limit=limit - len(top)
        )
        suggested = [
            RankedPosting(posting_id=p.posting_id, posting=p, match_score=None, is_recommended=True)
            for p in fresh
        ]
        return top + suggested

    async def top_documents_for_posting(self, posting_id: str, limit: int = 20) -> List[RankedDocument]:
        if await self.postings.get(posting_id) is None:
            raise NotFoundError("Posting", posting_id)
        scorecards = await self.scorecards.top_for_posting(posting_id, limit)
        documents = await asyncio.gather(*(self.documents.get(sc.document_id) for sc in scorecards))
        return [
            RankedDocument(document_id=sc.document_id, document=doc, match_score=sc.final_score, scorecard=sc)
            for sc, doc in zip(scorecards, documents)
        ]

    async def matches_for_document(self, document_id: str, limit: int = 10) -> List[RankedPosting]:
        if await self.documents.get(document_id) is None:
            raise NotFoundError("Document", document_id)
        scorecards = await self.scorecards.top_for_document(document_id, limit)
        return await self._with_postings(scorecards)
