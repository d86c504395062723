"""
Engine configuration loaded from the environment (.env supported)
"""
import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, validator
from pydantic import ValidationError as PydanticValidationError

from cvmatch.utils.exceptions import ConfigurationError

load_dotenv()


class OracleSettings(BaseModel):
    """Scoring oracle (Ollama) connection settings"""
    model_name: str = Field(default="llama3.1:8b", description="LLM model name")
    base_url: str = Field(default="http://localhost:11434", description="Ollama base URL")
    temperature: float = Field(default=0.2, ge=0.0, le=2.0, description="Generation temperature")
    timeout: int = Field(default=120, ge=1, le=600, description="Request timeout in seconds")

    @validator('base_url')
    def strip_trailing_slash(cls, v):
        return v.rstrip("/")


class ProcessingSettings(BaseModel):
    """Fan-out and retry behaviour"""
    max_concurrent: int = Field(default=5, ge=1, le=100, description="Maximum concurrent oracle calls per fan-out")
    retry_attempts: int = Field(default=2, ge=1, le=10, description="Attempts per oracle call on transport errors")
    retry_backoff: float = Field(default=1.0, ge=0.0, le=60.0, description="Base backoff between retries in seconds")
    task_history: int = Field(default=500, ge=1, description="Finished background matching tasks kept for inspection")


class MatchingDefaults(BaseModel):
    """Defaults applied when postings or callers leave values unset"""
    technical_weight: int = Field(default=70, ge=0, le=100, description="Default technical weight")
    recommendation_limit: int = Field(default=10, ge=1, description="Default size of recommendation lists")
    top_documents_limit: int = Field(default=20, ge=1, description="Default size of per-posting candidate lists")
    report_dir: str = Field(default="./reports", description="Where analysis reports are written")

    @property
    def hr_weight(self) -> int:
        return 100 - self.technical_weight


class DatabaseSettings(BaseModel):
    mongo_uri: str = Field(default="mongodb://localhost:27017", description="MongoDB connection string")
    db_name: str = Field(default="cvmatch", description="Database name")


class Settings(BaseModel):
    oracle: OracleSettings = Field(default_factory=OracleSettings)
    processing: ProcessingSettings = Field(default_factory=ProcessingSettings)
    matching: MatchingDefaults = Field(default_factory=MatchingDefaults)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)


def _env(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    return value.strip()


def _section(pairs) -> dict:
    return {key: value for key, value in pairs if value is not None}


def load_settings() -> Settings:
    """Build settings from environment variables, raising ConfigurationError on bad values"""
    try:
        return Settings(
            oracle=OracleSettings(**_section([
                ("model_name", _env("LLM_MODEL")),
                ("base_url", _env("OLLAMA_BASE_URL")),
                ("temperature", _env("LLM_TEMPERATURE")),
                ("timeout", _env("LLM_TIMEOUT")),
            ])),
            processing=ProcessingSettings(**_section([
                ("max_concurrent", _env("MAX_CONCURRENT_MATCHES")),
                ("retry_attempts", _env("ORACLE_RETRY_ATTEMPTS")),
                ("retry_backoff", _env("ORACLE_RETRY_BACKOFF")),
                ("task_history", _env("MATCH_TASK_HISTORY")),
            ])),
            matching=MatchingDefaults(**_section([
                ("technical_weight", _env("DEFAULT_TECHNICAL_WEIGHT")),
                ("recommendation_limit", _env("RECOMMENDATION_LIMIT")),
                ("top_documents_limit", _env("TOP_DOCUMENTS_LIMIT")),
                ("report_dir", _env("REPORT_DIR")),
            ])),
            database=DatabaseSettings(**_section([
                ("mongo_uri", _env("MONGO_DETAILS")),
                ("db_name", _env("DB_NAME")),
            ])),
        )
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid engine configuration: {e}", cause=e) from e


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
