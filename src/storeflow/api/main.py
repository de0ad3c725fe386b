"""FastAPI application."""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from storeflow import __version__
from storeflow.api.routes import health, primitives, templates, triggers, workflows
from storeflow.errors import (
    DuplicatePrimitiveError,
    GraphValidationError,
    InvalidSchemaError,
    NameConflictError,
    RegistrationError,
    StoreflowError,
    TemplateNotFoundError,
    TriggerMismatchError,
    WorkflowDisabledError,
    WorkflowNotFoundError,
)
from storeflow.observability import get_logger, setup_logging

# Setup logging
setup_logging()
logger = get_logger(__name__)

# Most specific first
ERROR_STATUS = [
    (WorkflowNotFoundError, 404),
    (TemplateNotFoundError, 404),
    (DuplicatePrimitiveError, 409),
    (NameConflictError, 409),
    (WorkflowDisabledError, 409),
    (GraphValidationError, 422),
    (InvalidSchemaError, 422),
    (TriggerMismatchError, 400),
    (RegistrationError, 400),
]

# Create FastAPI app
app = FastAPI(
    title="Storeflow",
    description="Workflow automation engine for the storefront CMS",
    version=__version__,
)

# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(primitives.router, tags=["primitives"])
app.include_router(workflows.router, tags=["workflows"])
app.include_router(triggers.router, tags=["triggers"])
app.include_router(templates.router, tags=["templates"])


def status_for(error: StoreflowError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(error, error_type):
            return status_code
    return 400


@app.exception_handler(StoreflowError)
def handle_storeflow_error(request: Request, exc: StoreflowError) -> JSONResponse:
    status_code = status_for(exc)
    logger.info(f"{request.method} {request.url.path} -> {status_code} {exc.code}")
    body = exc.to_dict()
    problems = getattr(exc, "problems", None)
    if problems:
        body["problems"] = problems
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(ValidationError)
def handle_model_error(request: Request, exc: ValidationError) -> JSONResponse:
    """Malformed workflow or primitive JSON sent as a plain dict body."""
    return JSONResponse(
        status_code=422,
        content={
            "code": "InvalidDefinition",
            "message": "Request body does not describe a valid object",
            "errors": exc.errors(include_url=False, include_context=False, include_input=False),
        },
    )


@app.get("/")
def root() -> dict:
    """Root endpoint."""
    return {
        "service": "storeflow",
        "version": __version__,
        "docs": "/docs",
    }
