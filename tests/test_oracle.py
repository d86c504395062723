import json
from unittest.mock import MagicMock

import pytest
import requests

from cvmatch.config import OracleSettings
from cvmatch.models.scorecard import Recommendation
from cvmatch.models.weights import WeightPair
from cvmatch.services.oracle import ScoringOracle, build_request, parse_scorecard
from cvmatch.utils.exceptions import (
    EmptyContentError,
    OracleErrorKind,
    OracleMalformedResponseError,
    OracleTransportError,
)

from conftest import good_reply, make_posting


def envelope(payload, status=200):
    resp = MagicMock()
    resp.status_code = status
    resp.text = json.dumps(payload)
    resp.json.return_value = payload
    resp.raise_for_status.return_value = None
    return resp


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def oracle(session):
    return ScoringOracle(OracleSettings(model_name="llama3.1:8b", base_url="http://ollama:11434/"), session=session)


class TestBuildRequest:
    def test_request_contract(self):
        posting = make_posting(title="Data Engineer", requirements=["SQL", "Airflow"])
        request = build_request("cv text", posting, WeightPair.from_technical(60))

        assert request["document_text"] == "cv text"
        assert request["technical_weight"] == 60
        assert request["hr_weight"] == 40
        assert "Data Engineer" in request["posting_summary"]
        assert "SQL, Airflow" in request["posting_summary"]
        assert request["system_instructions"]

    def test_without_posting(self):
        request = build_request("cv text", None, WeightPair())
        assert "Data Engineer" not in request["posting_summary"]


class TestScoringOracle:
    """Test cases for the Ollama-backed oracle"""

    def test_score_success(self, oracle, session):
        session.post.return_value = envelope({"response": json.dumps(good_reply())})

        result = oracle.score("Python developer", make_posting(), WeightPair())

        assert result.final_technical_score == 75
        assert result.general_recommendation == Recommendation.INTERVIEW
        args, kwargs = session.post.call_args
        assert args[0] == "http://ollama:11434/api/generate"
        assert kwargs["json"]["format"] == "json"
        assert kwargs["json"]["stream"] is False
        assert kwargs["timeout"] == 120

    def test_turkish_label_accepted(self, oracle, session):
        reply = good_reply(general_recommendation="Teknik değerlendirilmeli")
        session.post.return_value = envelope({"response": json.dumps(reply)})

        result = oracle.score("Python developer", make_posting(), WeightPair())
        assert result.general_recommendation == Recommendation.NEEDS_TECHNICAL_REVIEW

    def test_connection_error_is_transport(self, oracle, session):
        session.post.side_effect = requests.ConnectionError("refused")

        with pytest.raises(OracleTransportError) as exc_info:
            oracle.score("Python developer", make_posting(), WeightPair())
        assert exc_info.value.kind == OracleErrorKind.TRANSPORT

    def test_http_error_is_transport(self, oracle, session):
        resp = MagicMock()
        resp.status_code = 503
        resp.raise_for_status.side_effect = requests.HTTPError("unavailable", response=resp)
        session.post.return_value = resp

        with pytest.raises(OracleTransportError) as exc_info:
            oracle.score("Python developer", make_posting(), WeightPair())
        assert exc_info.value.details["status_code"] == 503

    def test_non_json_reply_is_malformed(self, oracle, session):
        session.post.return_value = envelope({"response": "I think this candidate is great"})

        with pytest.raises(OracleMalformedResponseError) as exc_info:
            oracle.score("Python developer", make_posting(), WeightPair())
        assert exc_info.value.kind == OracleErrorKind.MALFORMED_RESPONSE

    def test_missing_envelope_response_is_malformed(self, oracle, session):
        session.post.return_value = envelope({"done": True})

        with pytest.raises(OracleMalformedResponseError):
            oracle.score("Python developer", make_posting(), WeightPair())

    def test_empty_document_text(self, oracle, session):
        with pytest.raises(EmptyContentError):
            oracle.score("   ", make_posting(), WeightPair())
        session.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_ascore(self, oracle, session):
        session.post.return_value = envelope({"response": json.dumps(good_reply(hr=60))})

        result = await oracle.ascore("Python developer", None, WeightPair())
        assert result.final_hr_score == 60


class TestParseScorecard:
    def test_array_is_malformed(self):
        with pytest.raises(OracleMalformedResponseError):
            parse_scorecard("[1, 2, 3]")

    def test_schema_violation_is_malformed(self):
        with pytest.raises(OracleMalformedResponseError):
            parse_scorecard(json.dumps({"final_score": "very high"}))

    def test_unknown_label_is_malformed(self):
        with pytest.raises(OracleMalformedResponseError):
            parse_scorecard(json.dumps({"general_recommendation": "hire immediately"}))
