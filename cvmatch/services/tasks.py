"""
Background matching with observable task records.

Matching triggered by an upload or a posting change runs as a tracked
asyncio task; its outcome lands on a MatchTask record instead of being
lost in a log line.
"""
import asyncio
import uuid
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from cvmatch.services.orchestrator import MatchOrchestrator
from cvmatch.utils.logging_config import get_logger

logger = get_logger(__name__)

TaskKind = Literal["document", "posting"]


class MatchTask(BaseModel):
    task_id: str
    kind: TaskKind
    target_id: str
    reanalyze: bool = False
    status: str = "pending"  # pending, running, completed, failed
    matched: Optional[int] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


class MatchTaskQueue:
    STATUS_PENDING = "pending"
    STATUS_RUNNING = "running"
    STATUS_COMPLETED = "completed"
    STATUS_FAILED = "failed"

    def __init__(self, orchestrator: MatchOrchestrator, max_finished: int = 500):
        self.orchestrator = orchestrator
        self.max_finished = max_finished
        self._records: Dict[str, MatchTask] = {}
        self._running: Dict[str, asyncio.Task] = {}

    def submit_document(self, document_id: str) -> MatchTask:
        """Match a document against every active posting in the background"""
        return self._submit("document", document_id)

    def submit_posting(self, posting_id: str, reanalyze: bool = False) -> MatchTask:
        """Match a posting against every active document in the background"""
        return self._submit("posting", posting_id, reanalyze)

    def _submit(self, kind: TaskKind, target_id: str, reanalyze: bool = False) -> MatchTask:
        self._prune()
        record = MatchTask(task_id=str(uuid.uuid4()), kind=kind, target_id=target_id, reanalyze=reanalyze)
        self._records[record.task_id] = record
        task = asyncio.get_running_loop().create_task(self._run(record))
        self._running[record.task_id] = task
        task.add_done_callback(lambda _: self._running.pop(record.task_id, None))
        logger.info(f"Queued {kind} matching task {record.task_id} for {target_id}")
        return record

    async def _run(self, record: MatchTask) -> None:
        record.status = self.STATUS_RUNNING
        record.started_at = datetime.utcnow()
        try:
            if record.kind == "document":
                matches = await self.orchestrator.match_document_against_all_postings(
                    record.target_id, reanalyze=record.reanalyze
                )
            else:
                matches = await self.orchestrator.match_posting_against_all_documents(
                    record.target_id, reanalyze=record.reanalyze
                )
        except Exception as e:
            record.status = self.STATUS_FAILED
            record.error = str(e)
            logger.error(f"Matching task {record.task_id} for {record.kind} {record.target_id} failed: {e}")
        else:
            record.status = self.STATUS_COMPLETED
            record.matched = len(matches)
            logger.info(f"Matching task {record.task_id}: {record.kind} {record.target_id} matched {len(matches)}")
        finally:
            record.finished_at = datetime.utcnow()

    def _prune(self) -> None:
        """Drop the oldest finished records beyond max_finished"""
        finished = [
            r for r in self._records.values()
            if r.status in (self.STATUS_COMPLETED, self.STATUS_FAILED)
        ]
        excess = len(finished) - self.max_finished
        if excess <= 0:
            return
        finished.sort(key=lambda r: r.finished_at)
        for record in finished[:excess]:
            del self._records[record.task_id]
        logger.debug(f"Pruned {excess} finished matching tasks")

    def get(self, task_id: str) -> Optional[MatchTask]:
        return self._records.get(task_id)

    def list(self, status: str = None) -> List[MatchTask]:
        records = list(self._records.values())
        if status:
            records = [r for r in records if r.status == status]
        return sorted(records, key=lambda r: r.created_at)

    @property
    def pending(self) -> int:
        return len(self._running)

    async def drain(self) -> List[MatchTask]:
        """Wait for every outstanding task and return all records"""
        while self._running:
            batch = dict(self._running)
            await asyncio.gather(*batch.values())
            for task_id in batch:
                self._running.pop(task_id, None)
        self._prune()
        return self.list()
