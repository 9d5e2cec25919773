"""
ERP Core API Application Factory
"""

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from .obligations import router as obligations_router
from .payables import router as payables_router
from .directory import (
    clients_router, suppliers_router, work_codes_router,
    inventory_router, employees_router
)
from .invoicing import quotes_router, invoices_router
from .alerts import router as alerts_router
from .system import ErpSystem, get_erp_system
from ..logging_config import CORRELATION_HEADER, correlation_context


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="ERP Core API",
        description="Financial obligations, payables, directory and invoicing for a contracting business",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def bind_correlation_id(request: Request, call_next):
        """Tag every log line of a request with its correlation id"""
        with correlation_context(request.headers.get(CORRELATION_HEADER)) as correlation_id:
            response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response

    # Include routers
    app.include_router(obligations_router, prefix="/obligations", tags=["Obligations"])
    app.include_router(payables_router, prefix="/payables", tags=["Payables"])
    app.include_router(clients_router, prefix="/clients", tags=["Clients"])
    app.include_router(suppliers_router, prefix="/suppliers", tags=["Suppliers"])
    app.include_router(work_codes_router, prefix="/work-codes", tags=["Work Codes"])
    app.include_router(inventory_router, prefix="/inventory", tags=["Inventory"])
    app.include_router(employees_router, prefix="/employees", tags=["Employees"])
    app.include_router(quotes_router, prefix="/quotes", tags=["Quotes"])
    app.include_router(invoices_router, prefix="/invoices", tags=["Invoices"])
    app.include_router(alerts_router, prefix="/alerts", tags=["Alerts"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "erp_core_api",
            "version": "1.0.0"
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "ERP Core API",
            "version": "1.0.0",
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "obligations": "/obligations",
                "payables": "/payables",
                "clients": "/clients",
                "suppliers": "/suppliers",
                "work-codes": "/work-codes",
                "inventory": "/inventory",
                "employees": "/employees",
                "quotes": "/quotes",
                "invoices": "/invoices",
                "alerts": "/alerts",
            }
        }

    return app


def run_server(host: str = "0.0.0.0", port: int = 8090, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "erp_core.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )


__all__ = ["create_app", "run_server", "ErpSystem", "get_erp_system"]
