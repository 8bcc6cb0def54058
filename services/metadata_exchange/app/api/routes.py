"""API routes for the Metadata Exchange service."""

from fastapi import APIRouter, HTTPException, Request, Response, status
from sqlalchemy import text

from services.metadata_exchange.app.dependencies import (
    AppClock,
    AppSettings,
    DBSession,
    Repository,
)
from services.metadata_exchange.app.oai.responder import HarvestResponder
from services.metadata_exchange.app.registration.deposit_xml import render_deposit_xml
from services.metadata_exchange.app.registration.orchestrator import is_registration_configured
from shared.schemas.api_responses import ErrorResponse, HealthResponse, ReadinessResponse
from shared.utils.logging import get_correlation_id, get_logger

logger = get_logger(__name__)

router = APIRouter()

OAI_MEDIA_TYPE = "text/xml; charset=UTF-8"
DEPOSIT_MEDIA_TYPE = "application/xml"
SERVICE_VERSION = "0.1.0"


def create_error_response(
    error_code: str,
    message: str,
    details: dict | None = None,
) -> dict:
    """Create a standardized error response dict.

    Args:
        error_code: Machine-readable error code (e.g., "CONTENT_NOT_FOUND")
        message: Human-readable error message
        details: Optional additional error details

    Returns:
        Dict suitable for HTTPException detail parameter
    """
    response = ErrorResponse(
        error_code=error_code,
        message=message,
        details=details,
        correlation_id=get_correlation_id(),
    )
    return response.model_dump(exclude_none=True)


@router.get("/health", response_model=HealthResponse)
async def health_check(settings: AppSettings) -> HealthResponse:
    """Liveness check; only fails if the process cannot answer at all."""
    return HealthResponse(
        status="healthy",
        service=settings.service_name,
        version=SERVICE_VERSION,
    )


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check(db: DBSession, settings: AppSettings) -> ReadinessResponse:
    """Readiness check.

    Harvesting only needs the database. Registration configuration is
    reported alongside but does not gate readiness.
    """
    checks = {}
    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception as e:
        logger.warning("readiness_check_database_failed", error=str(e))
        checks["database"] = False

    return ReadinessResponse(
        ready=all(checks.values()),
        checks=checks,
        registration_configured=is_registration_configured(settings),
    )


@router.get("/oai")
async def oai_pmh(
    request: Request,
    repository: Repository,
    settings: AppSettings,
    clock: AppClock,
) -> Response:
    """OAI-PMH 2.0 endpoint.

    Always answers with an OAI-PMH XML document, including for protocol
    errors and internal failures.
    """
    responder = HarvestResponder(repository, settings, clock)
    result = await responder.handle(request.query_params)
    return Response(
        content=result.body,
        status_code=result.status_code,
        media_type=OAI_MEDIA_TYPE,
    )


@router.get("/deposits/{content_id}/xml")
async def deposit_xml(
    content_id: str,
    repository: Repository,
    settings: AppSettings,
    clock: AppClock,
) -> Response:
    """Download the Crossref deposit XML for a published record.

    Raises:
        HTTPException: 404 if the content is missing or not published,
            422 if it has no publication date
    """
    record = await repository.get_published_record(content_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=create_error_response(
                error_code="CONTENT_NOT_FOUND",
                message="Published content not found",
                details={"content_id": content_id},
            ),
        )

    try:
        body = render_deposit_xml(record, settings, clock)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=create_error_response(
                error_code="CONTENT_INCOMPLETE",
                message=str(e),
                details={"content_id": content_id},
            ),
        )

    logger.info("deposit_xml_exported", content_id=content_id)
    return Response(
        content=body,
        media_type=DEPOSIT_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="crossref-{content_id}.xml"'},
    )
