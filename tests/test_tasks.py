import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from cvmatch.services.tasks import MatchTaskQueue
from cvmatch.utils.exceptions import NotFoundError


@pytest.fixture
def orchestrator():
    mock = MagicMock()
    mock.match_document_against_all_postings = AsyncMock(return_value=["sc-1", "sc-2"])
    mock.match_posting_against_all_documents = AsyncMock(return_value=["sc-3"])
    return mock


class TestMatchTaskQueue:
    """Background matching tasks"""

    @pytest.mark.asyncio
    async def test_document_task_completes(self, orchestrator):
        queue = MatchTaskQueue(orchestrator)

        record = queue.submit_document("doc-1")
        assert record.status == "pending"

        await queue.drain()

        assert queue.get(record.task_id).status == "completed"
        assert record.matched == 2
        assert record.finished_at is not None
        orchestrator.match_document_against_all_postings.assert_awaited_once_with("doc-1", reanalyze=False)

    @pytest.mark.asyncio
    async def test_posting_task_reanalyze(self, orchestrator):
        queue = MatchTaskQueue(orchestrator)

        record = queue.submit_posting("post-1", reanalyze=True)
        await queue.drain()

        assert record.status == "completed"
        assert record.matched == 1
        orchestrator.match_posting_against_all_documents.assert_awaited_once_with("post-1", reanalyze=True)

    @pytest.mark.asyncio
    async def test_failure_is_recorded(self, orchestrator):
        orchestrator.match_document_against_all_postings.side_effect = NotFoundError("Document", "doc-9")
        queue = MatchTaskQueue(orchestrator)

        record = queue.submit_document("doc-9")
        await queue.drain()

        assert record.status == "failed"
        assert "doc-9" in record.error
        assert queue.list(status="failed") == [record]
        assert queue.pending == 0

    @pytest.mark.asyncio
    async def test_list_and_get(self, orchestrator):
        queue = MatchTaskQueue(orchestrator)

        first = queue.submit_document("doc-1")
        second = queue.submit_posting("post-1")
        records = await queue.drain()

        assert [r.task_id for r in records] == [first.task_id, second.task_id]
        assert queue.get("unknown") is None

    @pytest.mark.asyncio
    async def test_finished_records_are_bounded(self, orchestrator):
        queue = MatchTaskQueue(orchestrator, max_finished=2)

        for i in range(5):
            queue.submit_document(f"doc-{i}")
            await queue.drain()

        records = queue.list()
        assert [r.target_id for r in records] == ["doc-3", "doc-4"]

    @pytest.mark.asyncio
    async def test_running_records_are_kept(self, orchestrator):
        release = asyncio.Event()

        async def slow(document_id, reanalyze=False):
            await release.wait()
            return []

        orchestrator.match_document_against_all_postings.side_effect = slow
        queue = MatchTaskQueue(orchestrator, max_finished=1)

        running = [queue.submit_document(f"doc-{i}") for i in range(3)]
        queue.submit_document("doc-3")

        assert all(queue.get(r.task_id) is r for r in running)
        release.set()
        await queue.drain()
        assert len(queue.list()) == 1
