"""Shared web-layer dependencies and error mapping."""

from __future__ import annotations

import logging
from functools import lru_cache

from fastapi import Depends, Request
from fastapi.responses import JSONResponse

from leadenrich.enrich.service import EnrichmentService, build_sql_service
from leadenrich.enrich.triggers import EnrichmentTriggers
from leadenrich.errors import (
    BatchTooLarge,
    ComplianceDenied,
    InvalidLeadInput,
    LeadNotFound,
    RateLimitExceeded,
    ValidationFailure,
)

logger = logging.getLogger(__name__)

ERROR_STATUS = (
    (LeadNotFound, 404),
    (ComplianceDenied, 403),
    (InvalidLeadInput, 400),
    (BatchTooLarge, 400),
    (ValidationFailure, 422),
    (RateLimitExceeded, 429),
)


@lru_cache(maxsize=1)
def get_service() -> EnrichmentService:
    return build_sql_service()


def get_triggers(service: EnrichmentService = Depends(get_service)) -> EnrichmentTriggers:
    return EnrichmentTriggers(service)


def error_response(exc: Exception) -> JSONResponse:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return JSONResponse({"error": str(exc)}, status_code=status_code)
    logger.exception("web.unhandled_error", exc_info=exc)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


async def json_body(request: Request) -> dict:
    if not request.headers.get("content-type", "").startswith("application/json"):
        return {}
    if not await request.body():
        return {}
    try:
        body = await request.json()
    except ValueError as exc:
        raise InvalidLeadInput("Request body is not valid JSON") from exc
    if not isinstance(body, dict):
        raise InvalidLeadInput("Request body must be a JSON object")
    return body
