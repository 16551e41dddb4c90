"""
Main Application Entry Point.

This module initializes the FastAPI application, configures middleware (CORS),
and includes all API routers. It serves as the root of the web server.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from flowsmith_ai.core.logging_config import get_logger, setup_logging

from .api import mcp_tools
from .api.v1 import agent_blocks, health
from .core import constant
from .core.database import init_db
from .exception_handlers import setup_exception_handlers
from .services.agent import get_agent_handler

# Initialize logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifespan events.

    Creates missing tables on startup and waits for background memory writes
    on shutdown.
    """
    try:
        logger.info("Starting up FlowSmith-AI Server...")
        await init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)

    yield

    logger.info("Shutting down FlowSmith-AI Server...")
    await get_agent_handler().memory.wait_for_pending()


app = FastAPI(
    title=constant.PROJECT_NAME,
    description="""
    FlowSmith-AI Server API

    Executes Agent blocks for the workflow engine: provider calls, tool calling
    and conversation memory.
    """,
    version=constant.VERSION,
    openapi_url=f"{constant.API_V1_STR}/openapi.json",
    docs_url=f"{constant.API_V1_STR}/docs",
    redoc_url=f"{constant.API_V1_STR}/redoc",
    lifespan=lifespan,
)

# Set all CORS enabled origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_exception_handlers(app)

app.include_router(health.router, tags=["health"])
app.include_router(agent_blocks.router, prefix=f"{constant.API_V1_STR}/agent-blocks", tags=["agent-blocks"])
app.include_router(mcp_tools.router, prefix="/api/mcp/tools", tags=["mcp"])
