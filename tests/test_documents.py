import asyncio
from unittest.mock import MagicMock

import pytest

from cvmatch.services.documents import DocumentService
from cvmatch.utils.exceptions import EmptyContentError, NotFoundError, OracleMalformedResponseError

from conftest import FakeDocumentStore, FakeOracle, good_reply, make_document


@pytest.fixture
def store():
    return FakeDocumentStore()


@pytest.fixture
def tasks():
    return MagicMock()


class TestDocumentService:
    """CV lifecycle"""

    @pytest.mark.asyncio
    async def test_first_document_becomes_primary(self, store, tasks, settings):
        service = DocumentService(store, FakeOracle(), tasks=tasks, settings=settings)

        first = await service.register("cand-1", content="Python developer")
        second = await service.register("cand-1", content="Java developer")

        assert first.is_primary is True
        assert second.is_primary is False
        assert first.title == "CV 1"
        assert second.title == "CV 2"
        assert tasks.submit_document.call_count == 2

    @pytest.mark.asyncio
    async def test_concurrent_uploads_yield_one_primary(self, store, settings):
        service = DocumentService(store, FakeOracle(), settings=settings)

        registered = await asyncio.gather(*(service.register("cand-1", content=f"CV {i}") for i in range(5)))

        assert sum(d.is_primary for d in registered) == 1
        assert sum(d.is_primary for d in store.documents.values()) == 1

    @pytest.mark.asyncio
    async def test_upload_after_last_primary_removed_claims_primary(self, settings):
        only = make_document(owner_id="cand-1", is_primary=True)
        store = FakeDocumentStore([only])
        service = DocumentService(store, FakeOracle(), settings=settings)

        assert await service.deactivate(only.document_id, "cand-1") is None
        fresh = await service.register("cand-1", content="New CV")

        assert fresh.is_primary is True
        assert store.primaries["cand-1"] == fresh.document_id

    @pytest.mark.asyncio
    async def test_register_without_text_does_not_schedule(self, store, tasks, settings):
        service = DocumentService(store, FakeOracle(), tasks=tasks, settings=settings)

        await service.register("cand-1", title="Uploaded", file_path="/tmp/cv.pdf", file_type="pdf")

        tasks.submit_document.assert_not_called()

    @pytest.mark.asyncio
    async def test_set_primary_demotes_others(self, store, settings):
        a = make_document(owner_id="cand-1", is_primary=True)
        b = make_document(owner_id="cand-1")
        store = FakeDocumentStore([a, b])
        service = DocumentService(store, FakeOracle(), settings=settings)

        updated = await service.update(b.document_id, "cand-1", {"is_primary": True, "title": "Main"})

        assert updated.is_primary is True
        assert updated.title == "Main"
        assert store.documents[a.document_id].is_primary is False

    @pytest.mark.asyncio
    async def test_update_other_owner(self, settings):
        doc = make_document(owner_id="cand-1")
        service = DocumentService(FakeDocumentStore([doc]), FakeOracle(), settings=settings)

        with pytest.raises(NotFoundError):
            await service.update(doc.document_id, "cand-2", {"title": "Mine now"})

    @pytest.mark.asyncio
    async def test_deactivate_promotes(self, settings):
        primary = make_document(owner_id="cand-1", is_primary=True)
        other = make_document(owner_id="cand-1")
        store = FakeDocumentStore([primary, other])
        service = DocumentService(store, FakeOracle(), settings=settings)

        promoted = await service.deactivate(primary.document_id, "cand-1")

        assert promoted == other.document_id
        assert store.documents[other.document_id].is_primary is True
        assert store.documents[primary.document_id].is_active is False

    @pytest.mark.asyncio
    async def test_deactivate_unknown(self, store, settings):
        service = DocumentService(store, FakeOracle(), settings=settings)
        with pytest.raises(NotFoundError):
            await service.deactivate("missing", "cand-1")

    @pytest.mark.asyncio
    async def test_ensure_content_backfills(self, settings):
        doc = make_document(content="", file_path="/data/cv.pdf", file_type="pdf")
        store = FakeDocumentStore([doc])
        extractor = MagicMock(return_value="Extracted Python CV")
        service = DocumentService(store, FakeOracle(), extractor=extractor, settings=settings)

        result = await service.ensure_content(doc)

        assert result.content == "Extracted Python CV"
        extractor.assert_called_once_with("/data/cv.pdf", "pdf")
        assert store.contents_set == [doc.document_id]

    @pytest.mark.asyncio
    async def test_ensure_content_no_file(self, settings):
        doc = make_document(content="")
        service = DocumentService(FakeDocumentStore([doc]), FakeOracle(), settings=settings)

        with pytest.raises(EmptyContentError):
            await service.ensure_content(doc)

    @pytest.mark.asyncio
    async def test_ensure_content_already_present(self, settings):
        doc = make_document()
        extractor = MagicMock()
        service = DocumentService(FakeDocumentStore([doc]), FakeOracle(), extractor=extractor, settings=settings)

        await service.ensure_content(doc)
        extractor.assert_not_called()

    @pytest.mark.asyncio
    async def test_analyze_document(self, settings):
        doc = make_document()
        store = FakeDocumentStore([doc])
        oracle = FakeOracle(lambda *a: good_reply(technical=80, hr=50))
        service = DocumentService(store, oracle, settings=settings)

        scorecard = await service.analyze_document(doc.document_id)

        assert scorecard.posting_id is None
        assert scorecard.final_score == 71.0
        assert oracle.calls[0][1] is None
        assert store.documents[doc.document_id].analysis.scorecard_id == scorecard.scorecard_id

    @pytest.mark.asyncio
    async def test_analyze_document_malformed(self, settings):
        doc = make_document()
        service = DocumentService(FakeDocumentStore([doc]), FakeOracle(lambda *a: {}), settings=settings)

        with pytest.raises(OracleMalformedResponseError):
            await service.analyze_document(doc.document_id)
