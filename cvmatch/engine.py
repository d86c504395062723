"""
Wires stores, the scoring oracle and the services into one engine object
"""
from cvmatch.config import Settings, get_settings
from cvmatch.services.analyzer import ApplicationAnalyzer, write_analysis_report
from cvmatch.services.db import APPLICATIONS, DOCUMENT_OWNERS, DOCUMENTS, POSTINGS, SCORECARDS, get_database, init_indexes
from cvmatch.services.documents import DocumentService
from cvmatch.services.oracle import ScoringOracle
from cvmatch.services.orchestrator import MatchOrchestrator
from cvmatch.services.postings import PostingService
from cvmatch.services.ranker import RecommendationRanker
from cvmatch.services.stores import ApplicationStore, DocumentStore, PostingStore, ScorecardStore
from cvmatch.services.tasks import MatchTaskQueue
from cvmatch.utils.logging_config import get_logger

logger = get_logger(__name__)


class MatchingEngine:
    def __init__(self, database, settings: Settings, oracle: ScoringOracle = None):
        self.settings = settings
        self.database = database

        self.documents = DocumentStore(database[DOCUMENTS], database[DOCUMENT_OWNERS])
        self.postings = PostingStore(database[POSTINGS])
        self.scorecards = ScorecardStore(database[SCORECARDS])
        self.applications = ApplicationStore(database[APPLICATIONS])

        self.oracle = oracle or ScoringOracle(settings.oracle)
        self.orchestrator = MatchOrchestrator(self.documents, self.postings, self.scorecards, self.oracle, settings)
        self.ranker = RecommendationRanker(self.documents, self.postings, self.scorecards)
        self.analyzer = ApplicationAnalyzer(self.postings, self.applications, self.oracle, settings)
        self.tasks = MatchTaskQueue(self.orchestrator, max_finished=settings.processing.task_history)

        self.document_service = DocumentService(self.documents, self.oracle, tasks=self.tasks, settings=settings)
        self.posting_service = PostingService(
            self.postings, tasks=self.tasks, settings=settings,
            documents=self.documents, applications=self.applications,
        )

    async def startup(self):
        await init_indexes(self.database)

    async def recommendations(self, owner_id: str, limit: int = None):
        limit = limit or self.settings.matching.recommendation_limit
        return await self.ranker.recommended_postings_for_owner(owner_id, limit)

    async def candidates(self, posting_id: str, limit: int = None):
        limit = limit or self.settings.matching.top_documents_limit
        return await self.ranker.top_documents_for_posting(posting_id, limit)

    async def analyze_and_report(self, posting_id: str):
        """Batch-analyze a posting's applications and export the ranked result"""
        reports = await self.analyzer.analyze_applications(posting_id)
        posting = await self.postings.get(posting_id)
        paths = write_analysis_report(posting, reports, self.settings.matching.report_dir)
        return reports, paths


def build_engine(settings: Settings = None, database=None, oracle: ScoringOracle = None) -> MatchingEngine:
    settings = settings or get_settings()
    if database is None:
        database = get_database(settings.database)
    logger.info(
        f"Building matching engine (model={settings.oracle.model_name}, "
        f"max_concurrent={settings.processing.max_concurrent})"
    )
    return MatchingEngine(database, settings, oracle=oracle)
