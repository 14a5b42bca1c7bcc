"""
ACID Ledger API Application Factory
"""

import uvicorn
from fastapi import FastAPI

from .. import __version__
from ..config import get_config
from ..logging_config import setup_logging
from .acid import router as acid_router
from .isolation import router as isolation_router


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="ACID Ledger Demo API",
        description="Banking ledger demonstrating atomicity, locking strategies and isolation levels",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.include_router(acid_router, prefix="/api/acid", tags=["Transfers"])
    app.include_router(isolation_router, prefix="/api/isolation", tags=["Isolation"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "acid_ledger_api",
            "version": __version__
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "ACID Ledger Demo API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "transfers": "/api/acid",
                "isolation": "/api/isolation"
            },
            "strategies": ["uncontrolled", "atomic", "optimistic", "pessimistic"],
            "isolation_levels": ["read-uncommitted", "read-committed", "repeatable-read", "serializable"]
        }

    return app


app = create_app()


def run_server(host: str = None, port: int = None, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format)
    uvicorn.run(
        "acid_ledger.api:app",
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level=config.log_level.lower()
    )
