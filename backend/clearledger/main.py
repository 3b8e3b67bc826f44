from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from clearledger.application.errors import (
    AuthorizationError,
    ConflictError,
    ConsistencyError,
    ExternalDependencyError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from clearledger.config import settings
from clearledger.domain.policy import DenyReason
from clearledger.infrastructure.alerting import configure_alerting
from clearledger.infrastructure.logging import clear_request_context, configure_logging, get_logger
from clearledger.interfaces.api.v1.router import api_router

logger = get_logger(__name__)

NOT_PERMITTED = {"detail": "Not permitted"}

OPENAPI_DESCRIPTION = """
Multi-tenant ledger for student organizations: fees, fines, payments, waivers, appeals, and clearance.

How to call this API:
- Send `Authorization: Bearer <access_token>` issued by the identity provider.
- The organization is taken from the token's `tenant_id` claim; there is no tenant header.
- Denied requests and lookups outside your organization both answer `403 Not permitted`.
"""

OPENAPI_TAGS = [
    {"name": "health", "description": "Service health and connectivity checks."},
    {"name": "organizations", "description": "Invites, onboarding, tier and status changes, financial summary."},
    {"name": "students", "description": "Enrollment, student reads, and audited platform access to student records."},
    {"name": "catalog", "description": "Clearance periods, fee types, fee assignments, and fines."},
    {"name": "payments", "description": "Payment recording, allocation, verification, rejection, and receipts."},
    {"name": "waivers", "description": "Waiver requests and decisions."},
    {"name": "appeals", "description": "Student appeals against fees and fines."},
    {"name": "clearances", "description": "Per-period clearance status, blocking items, and overrides."},
    {"name": "audit", "description": "Append-only audit trail reads."},
]


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging()
    configure_alerting()
    logger.info("app_startup", app_name=settings.app_name, version=settings.app_version)
    yield
    logger.info("app_shutdown", app_name=settings.app_name)


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description=OPENAPI_DESCRIPTION,
    openapi_tags=OPENAPI_TAGS,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url, "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def reset_request_context(request: Request, call_next):
    clear_request_context()
    try:
        return await call_next(request)
    finally:
        clear_request_context()


@app.get("/")
def root():
    return {"message": "Clearledger API is running"}


@app.exception_handler(AuthorizationError)
async def handle_authorization(_: Request, exc: AuthorizationError):
    if exc.reason == DenyReason.not_authenticated:
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content=NOT_PERMITTED)
    return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content=NOT_PERMITTED)


@app.exception_handler(NotFoundError)
async def handle_not_found(request: Request, exc: NotFoundError):
    logger.info("entity_not_visible", path=request.url.path, detail=str(exc))
    return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content=NOT_PERMITTED)


@app.exception_handler(ConflictError)
async def handle_conflict(_: Request, exc: ConflictError):
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


@app.exception_handler(ForbiddenError)
async def handle_forbidden(_: Request, exc: ForbiddenError):
    return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
async def handle_validation(_: Request, exc: ValidationError):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


@app.exception_handler(ConsistencyError)
async def handle_consistency(request: Request, exc: ConsistencyError):
    logger.error("request_failed_consistency", path=request.url.path, error_type=type(exc).__name__, detail=str(exc))
    return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": "Please try again"})


@app.exception_handler(ExternalDependencyError)
async def handle_external_dependency(request: Request, exc: ExternalDependencyError):
    logger.error("request_failed_dependency", path=request.url.path, error_type=type(exc).__name__, detail=str(exc))
    return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": "Please try again"})


app.include_router(api_router)
