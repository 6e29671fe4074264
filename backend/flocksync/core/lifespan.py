# FILE: backend/flocksync/core/lifespan.py
# SYNC ENGINE - LIFESPAN
# 1. Connects MongoDB on startup and creates the indexes the handlers query by.
# 2. Closes every connection on shutdown.

from contextlib import asynccontextmanager
from fastapi import FastAPI
import structlog
from pymongo import ASCENDING
from pymongo.database import Database
from pymongo.errors import PyMongoError

from . import store
from .db import get_db, close_mongo_connections, close_redis_connection

logger = structlog.get_logger(__name__)


def create_mongo_indexes(db: Database) -> None:
    """Indexes for the admin lookup, the mirror-set lookup and lock retention."""
    try:
        # Administrators of a tenant (counter fan-out)
        db[store.USERS].create_index([("churchId", ASCENDING), ("role", ASCENDING)])
        # Mirror set per category
        db[store.USERS].create_index([("isMinistryAccount", ASCENDING), ("preferences.ministryName", ASCENDING)])
        # Owner mapping
        db[store.TENANTS].create_index([("ownerId", ASCENDING)])
        # Lock cleanup
        db[store.JOB_LOCKS].create_index([("createdAt", ASCENDING)])
        logger.info("lifespan.indexes_ready")
    except PyMongoError as e:
        logger.error("lifespan.index_creation_failed", error=str(e))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("lifespan.startup")
    db = next(get_db())
    app.state.mongo_db = db
    create_mongo_indexes(db)

    yield

    logger.info("lifespan.shutdown")
    close_mongo_connections()
    close_redis_connection()
