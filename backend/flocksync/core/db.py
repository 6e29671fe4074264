# FILE: backend/flocksync/core/db.py
# SYNC ENGINE - CONNECTION PROVIDERS
# Connections are opened lazily on first use so that workers, the listener
# and the API share one client per process without connecting at import time.

import pymongo
import redis
import structlog
from pymongo.database import Database
from pymongo.mongo_client import MongoClient
from pymongo.errors import ConnectionFailure
from urllib.parse import urlparse
from typing import Generator, Optional

from .config import settings

logger = structlog.get_logger(__name__)

mongo_client: Optional[MongoClient] = None
db_instance: Optional[Database] = None
redis_sync_client: Optional[redis.Redis] = None


def _connect_to_mongo() -> Database:
    global mongo_client, db_instance
    if db_instance is not None:
        return db_instance

    logger.info("db.mongo.connecting")
    try:
        client: MongoClient = pymongo.MongoClient(settings.DATABASE_URI, serverSelectionTimeoutMS=5000, tz_aware=True)
        client.admin.command('ping')
        db_name = urlparse(settings.DATABASE_URI).path.lstrip('/')
        if not db_name:
            raise ValueError("Database name not found in DATABASE_URI.")
        mongo_client = client
        db_instance = client[db_name]
        logger.info("db.mongo.connected", database=db_name)
        return db_instance
    except (ConnectionFailure, ValueError) as e:
        logger.error("db.mongo.connect_failed", error=str(e))
        raise


def _connect_to_sync_redis() -> redis.Redis:
    global redis_sync_client
    if redis_sync_client is not None:
        return redis_sync_client

    logger.info("db.redis.connecting")
    try:
        client = redis.from_url(settings.REDIS_URL, decode_responses=True)
        client.ping()
        redis_sync_client = client
        logger.info("db.redis.connected")
        return client
    except redis.ConnectionError as e:
        logger.error("db.redis.connect_failed", error=str(e))
        raise


# --- Dependency Providers ---
def get_db() -> Generator[Database, None, None]:
    yield _connect_to_mongo()


def get_redis_client() -> Generator[redis.Redis, None, None]:
    yield _connect_to_sync_redis()


# --- Shutdown Logic ---
def close_mongo_connections():
    global mongo_client, db_instance
    if mongo_client:
        mongo_client.close()
        mongo_client = None
        db_instance = None
        logger.info("db.mongo.closed")


def close_redis_connection():
    global redis_sync_client
    if redis_sync_client:
        redis_sync_client.close()
        redis_sync_client = None
        logger.info("db.redis.closed")
