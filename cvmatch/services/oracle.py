"""
Scoring oracle adapter: one synchronous Ollama call per (document text, posting, weights)
"""
import asyncio
import functools
import json
from typing import Optional

import requests
from pydantic import ValidationError as PydanticValidationError

from cvmatch.config import OracleSettings
from cvmatch.helpers.prompts import (
    NO_POSTING_SUMMARY,
    POSTING_SUMMARY,
    SCORING_REQUEST,
    SCORING_SYSTEM_PROMPT,
)
from cvmatch.models.schemas import Posting
from cvmatch.models.scorecard import OracleScorecard
from cvmatch.models.weights import WeightPair
from cvmatch.utils.exceptions import (
    EmptyContentError,
    OracleMalformedResponseError,
    OracleTransportError,
)
from cvmatch.utils.logging_config import get_logger

logger = get_logger(__name__)


def posting_summary(posting: Optional[Posting]) -> str:
    if posting is None:
        return NO_POSTING_SUMMARY
    return POSTING_SUMMARY.format(
        title=posting.title,
        company=posting.company,
        location=posting.location,
        description=posting.description,
        requirements=", ".join(posting.requirements),
        responsibilities=", ".join(posting.responsibilities),
        employment_type=posting.employment_type or "",
        experience_level=posting.experience_level or "",
    )


def build_request(document_text: str, posting: Optional[Posting], weights: WeightPair) -> dict:
    """Oracle request: system instructions, document text, posting summary and the weight pair"""
    return {
        "system_instructions": SCORING_SYSTEM_PROMPT,
        "document_text": document_text,
        "posting_summary": posting_summary(posting),
        "technical_weight": weights.technical_weight,
        "hr_weight": weights.hr_weight,
    }


def parse_scorecard(text: str) -> OracleScorecard:
    """Strict parse: the reply must be one JSON object matching the scorecard shape"""
    try:
        data = json.loads(text)
    except (TypeError, ValueError) as e:
        raise OracleMalformedResponseError("Oracle reply is not valid JSON", raw_response=text or "", cause=e) from e

    if not isinstance(data, dict):
        raise OracleMalformedResponseError("Oracle reply is not a JSON object", raw_response=text)

    try:
        return OracleScorecard(**data)
    except PydanticValidationError as e:
        raise OracleMalformedResponseError(f"Oracle reply violates the scorecard schema: {e}", raw_response=text, cause=e) from e


class ScoringOracle:
    """Wraps the external scoring model. Never persists anything and never retries."""

    def __init__(self, settings: OracleSettings = None, session: requests.Session = None):
        self.settings = settings or OracleSettings()
        self.session = session or requests.Session()

    def _generate(self, request: dict) -> str:
        url = f"{self.settings.base_url}/api/generate"
        prompt = SCORING_REQUEST.format(
            technical_weight=request["technical_weight"],
            hr_weight=request["hr_weight"],
            posting_summary=request["posting_summary"],
            document_text=request["document_text"],
        )
        try:
            resp = self.session.post(
                url,
                json={
                    "model": self.settings.model_name,
                    "system": request["system_instructions"],
                    "prompt": prompt,
                    "format": "json",
                    "options": {"temperature": self.settings.temperature},
                    "stream": False,
                },
                timeout=self.settings.timeout,
            )
            resp.raise_for_status()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise OracleTransportError(
                f"Oracle returned HTTP {status}", status_code=status,
                model_name=self.settings.model_name, cause=e
            ) from e
        except requests.RequestException as e:
            raise OracleTransportError(
                f"Oracle request failed: {e}", model_name=self.settings.model_name, cause=e
            ) from e

        try:
            envelope = resp.json()
        except ValueError as e:
            raise OracleMalformedResponseError(
                "Oracle envelope is not valid JSON", raw_response=resp.text,
                model_name=self.settings.model_name, cause=e
            ) from e

        content = envelope.get("response") if isinstance(envelope, dict) else None
        if not isinstance(content, str):
            raise OracleMalformedResponseError(
                "Oracle envelope has no response text", raw_response=resp.text,
                model_name=self.settings.model_name
            )
        return content

    def score(self, document_text: str, posting: Optional[Posting], weights: WeightPair) -> OracleScorecard:
        if not document_text or not document_text.strip():
            raise EmptyContentError()

        request = build_request(document_text, posting, weights)
        logger.debug(
            f"Scoring document ({len(document_text)} chars) against "
            f"{posting.posting_id if posting else 'no posting'} with weights "
            f"{weights.technical_weight}/{weights.hr_weight}"
        )
        return parse_scorecard(self._generate(request))

    async def ascore(self, document_text: str, posting: Optional[Posting], weights: WeightPair) -> OracleScorecard:
        """Run score() in the default executor so fan-out tasks only suspend on their own I/O"""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, functools.partial(self.score, document_text, posting, weights)
        )
