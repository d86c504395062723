from functools import lru_cache

import motor.motor_asyncio
from pymongo import ASCENDING, DESCENDING

from cvmatch.config import DatabaseSettings, get_settings
from cvmatch.utils.logging_config import get_logger

logger = get_logger(__name__)

# Collections
DOCUMENTS = "documents"
POSTINGS = "postings"
SCORECARDS = "scorecards"
APPLICATIONS = "applications"
USERS = "users"
DOCUMENT_OWNERS = "document_owners"


@lru_cache(maxsize=None)
def get_client(mongo_uri: str) -> motor.motor_asyncio.AsyncIOMotorClient:
    logger.info("Initializing MongoDB client")
    try:
        return motor.motor_asyncio.AsyncIOMotorClient(mongo_uri)
    except Exception as e:
        logger.error(f"Failed to initialize MongoDB client: {e}")
        raise


def get_database(settings: DatabaseSettings = None):
    settings = settings or get_settings().database
    logger.info(f"Using MongoDB database: {settings.db_name}")
    return get_client(settings.mongo_uri)[settings.db_name]


async def _create_index(coll, keys, **kwargs):
    try:
        await coll.create_index(keys, **kwargs)
        logger.debug(f"Created index on {coll.name}.{[k for k, _ in keys]}")
    except Exception as e:
        if "already exists" in str(e).lower():
            logger.debug(f"Index on {coll.name}.{[k for k, _ in keys]} already exists")
        else:
            logger.warning(f"Could not create index on {coll.name}.{[k for k, _ in keys]}: {e}")


async def init_indexes(db):
    """Index initialization for collections."""
    logger.info("Starting database index initialization")

    # one scorecard per (document, posting) pair; ranking reads sort by final_score
    await _create_index(db[SCORECARDS], [("document_id", ASCENDING), ("posting_id", ASCENDING)], unique=True)
    await _create_index(db[SCORECARDS], [("document_id", ASCENDING), ("final_score", DESCENDING)])
    await _create_index(db[SCORECARDS], [("posting_id", ASCENDING), ("final_score", DESCENDING)])
    await _create_index(db[SCORECARDS], [("scorecard_id", ASCENDING)], unique=True)

    await _create_index(db[DOCUMENTS], [("document_id", ASCENDING)], unique=True)
    await _create_index(db[DOCUMENTS], [("owner_id", ASCENDING), ("is_active", ASCENDING), ("created_at", DESCENDING)])
    await _create_index(db[DOCUMENT_OWNERS], [("owner_id", ASCENDING)], unique=True)

    await _create_index(db[POSTINGS], [("posting_id", ASCENDING)], unique=True)
    await _create_index(db[POSTINGS], [("status", ASCENDING), ("created_at", DESCENDING)])
    await _create_index(db[POSTINGS], [("owner_id", ASCENDING)])

    await _create_index(db[APPLICATIONS], [("application_id", ASCENDING)], unique=True)
    # one application per candidate and posting
    await _create_index(db[APPLICATIONS], [("posting_id", ASCENDING), ("applicant_id", ASCENDING)], unique=True)

    logger.info("Database index initialization completed")
