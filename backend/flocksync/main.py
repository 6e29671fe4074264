# FILE: backend/flocksync/main.py
# SYNC ENGINE - ROUTER REGISTRATION
# 1. Maintenance and sync callables under /api/v1.
# 2. Health check for the orchestrator.

from fastapi import FastAPI, status, APIRouter
from fastapi.middleware.cors import CORSMiddleware
import structlog

from flocksync import __version__
from flocksync.core.config import settings
from flocksync.core.lifespan import lifespan
from flocksync.core.logging_config import configure_logging

# --- Router Imports ---
from flocksync.api.endpoints.maintenance import router as maintenance_router

configure_logging()
logger = structlog.get_logger(__name__)

app = FastAPI(title=settings.PROJECT_NAME, version=__version__, lifespan=lifespan)

# --- MIDDLEWARE ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- V1 ROUTER ASSEMBLY ---
api_v1_router = APIRouter(prefix=settings.API_V1_STR)
api_v1_router.include_router(maintenance_router)

app.include_router(api_v1_router)


@app.get("/health", status_code=status.HTTP_200_OK, tags=["Health Check"])
def health_check():
    return {"status": "ok", "version": __version__}
