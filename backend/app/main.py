#!/usr/bin/env python3
"""
Persistency Assistant - Main FastAPI Application

Application entry point
"""

import argparse
import logging
import os
import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Add the backend directory to Python path
current_dir = os.path.dirname(os.path.abspath(__file__))
backend_dir = os.path.dirname(current_dir)

if backend_dir not in sys.path:
    sys.path.insert(0, backend_dir)

from app.config import BitbucketConfig, ServerConfig
from app.config.logging_config import LoggingConfig
from app.utils.exceptions import register_exception_handlers
from app.utils.model.response_model import BaseResponse
from app.db.base import init_db, dispose_db

from app.api import (
    session_router,
    bitbucket_router,
    retrieval_router,
)

LoggingConfig().setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifecycle

    Creates the tables on startup and disposes the engine on shutdown
    """
    logger.info("=" * 80)
    logger.info("Starting Persistency Assistant...")
    logger.info("=" * 80)

    try:
        await init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        logger.warning("Application will start but database operations may fail")

    if not BitbucketConfig.is_configured():
        logger.warning("Bitbucket OAuth is not configured; session creation and persistence will fail")

    logger.info("Application startup complete")
    logger.info(f"Server URL: http://{ServerConfig.HOST}:{ServerConfig.PORT}")
    logger.info(f"Documentation: http://{ServerConfig.HOST}:{ServerConfig.PORT}/docs")
    logger.info(f"Health Check: http://{ServerConfig.HOST}:{ServerConfig.PORT}/health")
    logger.info("=" * 80)

    yield

    logger.info("Shutting down application...")
    try:
        await dispose_db()
        logger.info("Database connections closed")
    except Exception as e:
        logger.error(f"Error closing database: {e}")

    logger.info("Application shutdown complete")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application

    Returns:
        Configured FastAPI instance
    """
    app = FastAPI(
        title="Persistency Assistant",
        version="1.0.0",
        description="Keeps a repository's ai/ persistency layer in sync with chat sessions through Bitbucket pull requests",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS must be first; the credential travels as a cookie
    app.add_middleware(
        CORSMiddleware,
        allow_origins=ServerConfig.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(session_router, prefix="/api")
    app.include_router(bitbucket_router, prefix="/api")
    app.include_router(retrieval_router, prefix="/api")

    @app.get("/health", tags=["health"], operation_id="health")
    async def health():
        return BaseResponse.success(data={"status": "ok"})

    return app


def run_api(host: str, port: int, **kwargs):
    """Run the API server"""
    try:
        uvicorn.run(
            "app.main:app",
            host=host,
            port=port,
            reload=kwargs.get("reload") or ServerConfig.RELOAD
        )
    except Exception as e:
        logger.error(f"Failed to start API server: {e}")
        raise


app = create_app()

if __name__ == "__main__":
    parser = argparse.ArgumentParser(prog='persistency-assistant',
                                     description='Persistency Assistant Server')
    parser.add_argument("--host", type=str, default=ServerConfig.HOST)
    parser.add_argument("--port", type=int, default=ServerConfig.PORT)
    parser.add_argument("--reload", action="store_true", default=ServerConfig.RELOAD)

    args = parser.parse_args()

    try:
        logger.info(f"  - Server URL: http://{args.host}:{args.port}")
        logger.info(f"  - Documentation: http://{args.host}:{args.port}/docs")

        run_api(
            host=args.host,
            port=args.port,
            reload=args.reload
        )
    except Exception as e:
        logger.error(f"Application startup failed: {e}")
        sys.exit(1)
