from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from cvmatch.engine import MatchingEngine, build_engine
from cvmatch.helpers.parsing import clean_text, extract_text, file_type_for
from cvmatch.services.db import DOCUMENT_OWNERS
from cvmatch.services.stores import DocumentStore, ScorecardStore
from cvmatch.utils.exceptions import ValidationError

from conftest import FakeOracle


class TestBuildEngine:
    def test_wires_components(self, settings):
        database = MagicMock()

        engine = build_engine(settings, database=database, oracle=FakeOracle())

        assert isinstance(engine, MatchingEngine)
        assert isinstance(engine.documents, DocumentStore)
        assert isinstance(engine.scorecards, ScorecardStore)
        assert engine.orchestrator.scorecards is engine.scorecards
        assert engine.document_service.tasks is engine.tasks
        assert engine.posting_service.tasks is engine.tasks
        assert engine.tasks.orchestrator is engine.orchestrator
        assert engine.tasks.max_finished == settings.processing.task_history
        assert engine.posting_service.documents is engine.documents
        assert engine.posting_service.applications is engine.applications

    @patch('cvmatch.engine.get_database')
    def test_uses_configured_database(self, mock_get_database, settings):
        mock_get_database.return_value = MagicMock()

        engine = build_engine(settings, oracle=FakeOracle())

        mock_get_database.assert_called_once_with(settings.database)
        mock_get_database.return_value.__getitem__.assert_any_call(DOCUMENT_OWNERS)

    @pytest.mark.asyncio
    async def test_recommendations_default_limit(self, settings):
        engine = build_engine(settings, database=MagicMock(), oracle=FakeOracle())
        engine.ranker.recommended_postings_for_owner = AsyncMock(return_value=[])

        await engine.recommendations("cand-1")

        engine.ranker.recommended_postings_for_owner.assert_awaited_once_with("cand-1", 10)


class TestParsing:
    def test_extract_txt(self, tmp_path):
        path = tmp_path / "cv.txt"
        path.write_text("Jane Doe\n\n  Python   developer ")

        assert extract_text(str(path)) == "Jane Doe Python developer"

    def test_unsupported_type(self, tmp_path):
        with pytest.raises(ValidationError):
            extract_text(str(tmp_path / "cv.rtf"))

    def test_file_type_for(self):
        assert file_type_for("/uploads/CV.PDF") == "pdf"

    def test_clean_text(self):
        assert clean_text("a\tb\n\nc") == "a b c"
