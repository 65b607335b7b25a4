"""
Loan Servicing API Application Factory
"""

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .dependencies import ServicingSystem, get_servicing_system
from .status import router as status_router
from .imports import router as imports_router
from .ledger import router as ledger_router
from .loans import router as loans_router
from .clients import router as clients_router
from .admin import router as admin_router
from .. import __version__


class MaintenanceGate:
    """Answers 503 for everything but health and admin routes while in maintenance"""

    OPEN_PREFIXES = ("/health", "/admin", "/docs", "/openapi.json")

    def __init__(self, system: ServicingSystem):
        self.system = system

    async def __call__(self, request: Request, call_next):
        if self.system.flags.maintenance and not request.url.path.startswith(self.OPEN_PREFIXES):
            return JSONResponse(
                status_code=503,
                content={"detail": "Service under maintenance"}
            )
        return await call_next(request)


def create_app(system: Optional[ServicingSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    system = system or ServicingSystem()

    app = FastAPI(
        title="Loan Servicing Core API",
        description="Loan status derivation and collection reconciliation",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.system = system

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(MaintenanceGate(system))

    # Include routers
    app.include_router(status_router, prefix="/status", tags=["Status"])
    app.include_router(imports_router, prefix="/imports", tags=["Imports"])
    app.include_router(ledger_router, prefix="/ledger", tags=["Ledger"])
    app.include_router(loans_router, prefix="/loans", tags=["Loan Cycles"])
    app.include_router(clients_router, prefix="/clients", tags=["Clients"])
    app.include_router(admin_router, prefix="/admin", tags=["Admin"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "loan_servicing_api",
            "version": __version__,
            "maintenance": system.flags.maintenance
        }

    return app


__all__ = ["create_app", "ServicingSystem", "get_servicing_system"]
