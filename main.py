"""
FastAPI entry point for Azure DevOps Write-Back Agent.
"""
import os
import logging
from dotenv import load_dotenv

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# ADO_* and INTERNAL_SERVICE_KEY must be in the environment before settings are read
_env_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env")
try:
    if load_dotenv(_env_path):
        logger.info(f"Loaded environment from {_env_path}")
except OSError as e:
    logger.warning(f"Could not read {_env_path}, using process environment only: {e}")

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from api.writeback import router as writeback_router
from src.ado_writeback_agent.config import get_settings
from src.ado_writeback_agent.version import __version__

app = FastAPI(
    title="Azure DevOps Write-Back Agent",
    description="Creates AI-generated test plans and work item hierarchies in Azure DevOps",
    version=__version__
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origin_list(),
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(writeback_router)


@app.get("/")
async def root():
    """Service banner."""
    return {"service": "ado-writeback-agent", "version": __version__}


@app.get("/health")
async def health():
    """Liveness plus whether a default Azure DevOps target is configured."""
    settings = get_settings()
    return {
        "status": "healthy",
        "ado_target_configured": bool(settings.organization and settings.project)
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8002")))
