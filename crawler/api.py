from __future__ import annotations

import structlog
from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from backend.security import UrlRejected, normalize_url
from backend.sessions import new_session_id
from models import ScrapeAccepted, ScrapeRequest

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api", tags=["crawler"])


def _validation_details(exc: PydanticValidationError) -> list[dict[str, str]]:
    return [
        {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]


@router.post("/scrape", status_code=status.HTTP_202_ACCEPTED, response_model=ScrapeAccepted)
async def scrape(request: Request) -> JSONResponse:
    """Validate a crawl request without running it.

    Crawls run over the WebSocket; this endpoint only checks the body and
    the target URL and hands back a fresh id.
    """

    try:
        body = await request.json()
    except ValueError:
        return JSONResponse(
            {"error": "Invalid request", "details": [{"field": "body", "message": "Body must be JSON"}]},
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    try:
        payload = ScrapeRequest.model_validate(body)
    except PydanticValidationError as exc:
        logger.warning("scrape_request_invalid", errors=exc.error_count())
        return JSONResponse(
            {"error": "Invalid request", "details": _validation_details(exc)},
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    try:
        origin = normalize_url(payload.url)
    except UrlRejected as exc:
        logger.warning("scrape_request_rejected", reason=exc.reason.value, url=payload.url)
        return JSONResponse({"error": exc.message}, status_code=status.HTTP_400_BAD_REQUEST)

    accepted = ScrapeAccepted(
        session_id=new_session_id(),
        url=origin.href,
        max_pages=payload.max_pages,
    )
    logger.info("scrape_request_accepted", session_id=accepted.session_id, url=origin.href)
    return JSONResponse(accepted.model_dump(by_alias=True), status_code=status.HTTP_202_ACCEPTED)
