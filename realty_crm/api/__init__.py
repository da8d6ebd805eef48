"""
Real-Estate CRM Lending API Application Factory
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from .. import __version__
from ..config import get_config
from ..exceptions import InvalidStatusTransitionError, LoanCalculationError, LoanNotFoundError
from ..logging_config import get_logger, log_action, setup_logging
from .loans import calculator_router, router as loans_router


logger = get_logger("realty_crm.api")


async def loan_calculation_error_handler(request: Request, exc: LoanCalculationError):
    log_action(
        logger, "warning", f"Rejected loan terms: {exc.message}",
        action="loan_validation_failed", resource=request.url.path,
        extra=exc.to_dict()["details"]
    )
    return JSONResponse(status_code=422, content={"detail": exc.to_dict()})


async def loan_not_found_handler(request: Request, exc: LoanNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


async def status_transition_handler(request: Request, exc: InvalidStatusTransitionError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    config = get_config()
    setup_logging(config.log_level, config.log_format, config.log_file)

    app = FastAPI(
        title="Real-Estate CRM Lending API",
        description="Loan amortization and servicing for real-estate projects",
        version=__version__,
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

    app.add_exception_handler(LoanCalculationError, loan_calculation_error_handler)
    app.add_exception_handler(LoanNotFoundError, loan_not_found_handler)
    app.add_exception_handler(InvalidStatusTransitionError, status_transition_handler)

    app.include_router(calculator_router, prefix="/loans", tags=["Calculator"])
    app.include_router(loans_router, prefix="/projects/{project_id}/loans", tags=["Loans"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "realty_crm_api",
            "version": __version__
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Real-Estate CRM Lending API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "calculator": "/loans/calculate",
                "project_loans": "/projects/{project_id}/loans"
            }
        }

    return app


app = create_app()


def run_server(host: str = None, port: int = None, debug: bool = None):
    """Run the FastAPI server"""
    config = get_config()
    uvicorn.run(
        "realty_crm.api:app",
        host=host or config.api_host,
        port=port or config.api_port,
        reload=config.api_debug if debug is None else debug,
        log_level=config.log_level.lower()
    )
