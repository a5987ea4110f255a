"""Main FastAPI application entry point."""
import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gather.database import Base, config, engine
from gather.api.routes import router
from gather.exceptions import (
    AcknowledgementValidationError,
    ConsistencyRepairError,
    FreezeNotReadyError,
    MutationNotPermittedError,
    NotFoundError,
    RefusalError,
    StaleEventError,
)
from gather.logging_config import setup_logging
# Import models to register them with SQLAlchemy Base
from gather.models import audit, domain  # noqa: F401

setup_logging(config.log_format, config.log_level)
logger = logging.getLogger(__name__)

# Create database tables
Base.metadata.create_all(bind=engine)

# Create FastAPI app
app = FastAPI(
    title="Gather - Event Lifecycle Engine",
    description="Plans group events through DRAFT, CONFIRMING, FROZEN and COMPLETE without letting the plan lie.",
    version="0.1.0",
)

# Enable CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # For MVP - restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(NotFoundError)
def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": exc.message})


@app.exception_handler(MutationNotPermittedError)
def mutation_refused_handler(request: Request, exc: MutationNotPermittedError):
    return JSONResponse(
        status_code=status.HTTP_403_FORBIDDEN,
        content={
            "detail": {
                "message": exc.message,
                "stage": getattr(exc.stage, "value", exc.stage),
                "action": getattr(exc.action, "value", exc.action),
            }
        },
    )


@app.exception_handler(FreezeNotReadyError)
def freeze_refused_handler(request: Request, exc: FreezeNotReadyError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": {"message": exc.message, "gap_count": exc.gap_count}},
    )


@app.exception_handler(AcknowledgementValidationError)
def acknowledgement_refused_handler(request: Request, exc: AcknowledgementValidationError):
    detail = {"message": exc.message, "rule": exc.rule}
    if exc.hint:
        detail["hint"] = exc.hint
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": detail})


@app.exception_handler(RefusalError)
def refusal_handler(request: Request, exc: RefusalError):
    """Illegal transitions, missing override reasons and other precise refusals."""
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": {"message": exc.message}})


@app.exception_handler(StaleEventError)
@app.exception_handler(ConsistencyRepairError)
def conflict_handler(request: Request, exc):
    logger.warning("Transaction aborted: %s", exc.message)
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": {"message": exc.message}})


@app.exception_handler(Exception)
def internal_error_handler(request: Request, exc: Exception):
    # Never leak internals (SQL, stack traces) to the caller
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal Server Error"},
    )


# Include API routes
app.include_router(router, prefix="/api", tags=["Gather"])


# Health check
@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "Gather"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
