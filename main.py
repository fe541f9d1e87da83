"""
Main FastAPI application entry point for Identity Reconciliation System
This file sets up the FastAPI application with configuration, middleware,
exception handlers, the /identify endpoint and the health check. It serves
as the entry point for both local development and AWS Lambda deployment.
"""

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
import logging
import traceback
from datetime import datetime, timezone
from typing import Optional

from schemas.identify import IdentifyRequest, IdentifyResponse, ErrorResponse
from services.contact_store import SqlAlchemyStoreProvider
from services.errors import InvalidInputError, ReconciliationError, StoreUnavailableError
from services.identity_service import IdentityService
from services.memory_store import InMemoryContactStore
from config import settings

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Create FastAPI application instance
app = FastAPI(
    title=settings.API_TITLE,
    description=settings.API_DESCRIPTION,
    version=settings.API_VERSION,
    debug=settings.DEBUG
)

# Configure CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

_identity_service: Optional[IdentityService] = None


def build_identity_service(backend: str = None) -> IdentityService:
    """Create the reconciliation engine on top of the configured contact store"""
    backend = backend or settings.STORE_BACKEND
    if backend == "memory":
        logger.warning("Using in-memory contact store; contacts are lost on restart")
        return IdentityService(InMemoryContactStore())
    if backend == "sqlalchemy":
        return IdentityService(SqlAlchemyStoreProvider())
    raise ValueError(f"Unknown STORE_BACKEND: {backend}")


def get_identity_service() -> IdentityService:
    """FastAPI dependency returning the process-wide identity service"""
    global _identity_service
    if _identity_service is None:
        _identity_service = build_identity_service()
    return _identity_service


def _error_details(exc: ValidationError) -> dict:
    error_details = []
    for error in exc.errors():
        error_details.append({
            "field": " -> ".join(str(x) for x in error["loc"]),
            "message": error["msg"],
            "type": error["type"]
        })
    return {"errors": error_details}


# Exception handlers
@app.exception_handler(RequestValidationError)
@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc):
    """Handle request body validation errors as client errors"""
    logger.warning(f"Validation error for {request.url}: {exc}")

    error_response = ErrorResponse(
        error="InvalidInput",
        message="Request validation failed",
        details=_error_details(exc)
    )

    return JSONResponse(
        status_code=400,
        content=error_response.model_dump()
    )


@app.exception_handler(InvalidInputError)
async def invalid_input_exception_handler(request: Request, exc: InvalidInputError):
    logger.warning(f"Invalid input for {request.url}: {exc}")

    return JSONResponse(
        status_code=400,
        content=ErrorResponse(error="InvalidInput", message=exc.message).model_dump()
    )


@app.exception_handler(StoreUnavailableError)
async def store_unavailable_exception_handler(request: Request, exc: StoreUnavailableError):
    """Handle contact store failures; the client may retry later"""
    logger.error(f"Contact store unavailable for {request.url}: {exc}")

    return JSONResponse(
        status_code=503,
        content=ErrorResponse(
            error="StoreUnavailable",
            message="Contact store is currently unavailable. Please try again later."
        ).model_dump()
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors"""
    logger.error(f"Unexpected error for {request.url}: {exc}")
    logger.error(f"Traceback: {traceback.format_exc()}")

    error_response = ErrorResponse(
        error="InternalServerError",
        message="An unexpected error occurred"
    )

    return JSONResponse(
        status_code=500,
        content=error_response.model_dump()
    )


@app.get("/")
async def root():
    """
    Root endpoint that returns basic API information
    """
    return {
        "message": "Identity Reconciliation API is running",
        "version": settings.API_VERSION,
        "environment": settings.ENVIRONMENT
    }


@app.get("/health")
async def health_check(service: IdentityService = Depends(get_identity_service)):
    """
    Health check endpoint for monitoring and load balancer health checks
    Always answers 200; a failing store is reported as "degraded"
    """
    store_status = "unknown"
    store_error = None
    try:
        store_status = "connected" if await service.ping() else "disconnected"
    except Exception as e:
        store_status = "error"
        store_error = str(e)[:100]

    response = {
        "status": "ok" if store_status == "connected" else "degraded",
        "environment": settings.ENVIRONMENT,
        "version": settings.API_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "lambda": settings.is_lambda_environment(),
        "store": {
            "backend": service.provider.backend,
            "status": store_status
        }
    }

    if store_error:
        response["store"]["error"] = store_error

    return response


@app.post("/identify", response_model=IdentifyResponse)
async def identify_endpoint(
    request: IdentifyRequest,
    service: IdentityService = Depends(get_identity_service)
):
    """
    Main identity reconciliation endpoint

    Links customer identities based on email and/or phone number.
    Returns consolidated contact information including all linked emails,
    phone numbers, and secondary contact IDs.

    **Algorithm:**
    1. Find existing contacts matching email or phone
    2. If no matches → create new primary contact
    3. If matches found → resolve each to its primary contact:
       - Several primaries → the oldest stays primary, the others become its secondaries
       - New email or phone → create secondary contact
    4. Return consolidated contact information
    """
    try:
        logger.info(f"Processing identify request: email={request.email}, phone={request.phoneNumber}")

        response = await service.identify_contact(request)

        logger.info(f"Successfully processed request. Primary contact ID: {response.contact.primaryContatctId}")

        return response

    except ReconciliationError:
        # Mapped to 400/503 by the exception handlers
        raise

    except Exception as e:
        logger.error(f"Error in identify endpoint: {e}")
        logger.error(f"Traceback: {traceback.format_exc()}")

        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="InternalServerError",
                message="Unable to process identity reconciliation request"
            ).model_dump()
        )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1
    )
