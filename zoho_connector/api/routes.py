"""
FastAPI routes for the Zoho Creator connector.
"""

from __future__ import annotations

import logging
import re
import uuid
from http import HTTPStatus
from typing import Annotated, Any
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse

from zoho_connector.clients.zoho_api import RemoteApiError, ScopePermissionError
from zoho_connector.clients.zoho_auth import AuthError, InvalidOAuthStateError
from zoho_connector.dependencies import (
    get_app_settings,
    get_bulk_history_store,
    get_bulk_queue_service,
    get_oauth_state_encoder,
    get_record_service,
    get_token_manager,
)
from zoho_connector.schemas import (
    BulkExportRequest,
    BulkExportStatus,
    ConnectorStatus,
    OAuthCallbackPayload,
)

router = APIRouter()
logger = logging.getLogger(__name__)

_MAX_ERROR_LENGTH = 200
_UNSAFE_ERROR_CHARS = re.compile(r"[^A-Za-z0-9 .,:_\-']")


def _sanitize_error(message: str) -> str:
    cleaned = _UNSAFE_ERROR_CHARS.sub("", message).strip()
    return cleaned[:_MAX_ERROR_LENGTH] or "Authorization failed"


def _with_query(url: str, params: dict[str, str]) -> str:
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{urlencode(params)}"


def _wants_redirect(request: Request, redirect: bool) -> bool:
    return redirect or "text/html" in request.headers.get("accept", "").lower()


def _zoho_http_error(exc: Exception) -> HTTPException:
    """Translate connector errors into HTTP responses."""
    if isinstance(exc, AuthError):
        return HTTPException(
            status_code=HTTPStatus.SERVICE_UNAVAILABLE,
            detail="Zoho connector is not authorized.",
        )
    if isinstance(exc, ScopePermissionError):
        return HTTPException(status_code=HTTPStatus.FORBIDDEN, detail=str(exc))
    return HTTPException(status_code=HTTPStatus.BAD_GATEWAY, detail=str(exc))


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


@router.get("/zoho/request-code", status_code=HTTPStatus.OK)
async def request_authorization_code(
    request: Request,
    token_manager: Annotated[Any, Depends(get_token_manager)],
    state_encoder: Annotated[Any, Depends(get_oauth_state_encoder)],
    redirect: bool = Query(
        default=False,
        description="When true, respond with a redirect to the Zoho consent screen.",
    ),
) -> Response:
    """Start the authorization-code flow with a signed state value."""
    state = state_encoder.encode({"nonce": uuid.uuid4().hex})
    authorization_url = token_manager.build_authorization_url(state)

    if _wants_redirect(request, redirect):
        return RedirectResponse(url=authorization_url, status_code=HTTPStatus.TEMPORARY_REDIRECT)

    return JSONResponse(content={"authorization_url": authorization_url, "state": state})


@router.get("/zoho/request-code-response", status_code=HTTPStatus.OK)
async def handle_authorization_response(
    token_manager: Annotated[Any, Depends(get_token_manager)],
    state_encoder: Annotated[Any, Depends(get_oauth_state_encoder)],
    settings: Annotated[Any, Depends(get_app_settings)],
    code: str | None = Query(default=None, description="Authorization code returned by Zoho."),
    state: str | None = Query(default=None, description="OAuth state token."),
    error: str | None = Query(default=None, description="Error reported by Zoho."),
) -> Response:
    """Exchange the authorization code and store the first token pair.

    Failures never echo upstream content: the browser is sent back to the
    frontend (or ``/``) with a short sanitized ``error`` parameter.
    """
    payload = OAuthCallbackPayload(code=code, state=state, error=error)
    fallback = str(settings.frontend_base_url) if settings.frontend_base_url else "/"

    def _failure(message: str) -> RedirectResponse:
        logger.warning("Zoho authorization failed: %s", message)
        return RedirectResponse(
            url=_with_query(fallback, {"error": _sanitize_error(message)}),
            status_code=HTTPStatus.TEMPORARY_REDIRECT,
        )

    if payload.error:
        return _failure(f"Zoho denied the authorization: {payload.error}")
    if not payload.code or not payload.state:
        return _failure("Missing authorization code or state.")

    try:
        state_encoder.decode(payload.state)
    except InvalidOAuthStateError:
        return _failure("Invalid or expired OAuth state.")

    if not await token_manager.generate_first_token(payload.code):
        return _failure("Could not exchange the authorization code.")

    if settings.frontend_base_url:
        return RedirectResponse(
            url=str(settings.frontend_base_url), status_code=HTTPStatus.TEMPORARY_REDIRECT
        )
    return JSONResponse(content={"status": "connected"})


@router.get("/zoho/status", response_model=ConnectorStatus)
async def connector_status(
    token_manager: Annotated[Any, Depends(get_token_manager)],
) -> ConnectorStatus:
    return ConnectorStatus(ready=await token_manager.is_ready())


@router.post("/zoho/reset-tokens", status_code=HTTPStatus.OK)
async def reset_tokens(
    token_manager: Annotated[Any, Depends(get_token_manager)],
    settings: Annotated[Any, Depends(get_app_settings)],
) -> dict:
    """Drop stored tokens. Unavailable in production."""
    if settings.is_production:
        raise HTTPException(status_code=HTTPStatus.NOT_FOUND, detail="Not Found")
    token_manager.reset()
    return {"status": "reset"}


@router.get("/zoho/reports/{report}/records")
async def read_report_records(
    report: str,
    record_service: Annotated[Any, Depends(get_record_service)],
    criteria: str | None = Query(default=None, description="Raw Zoho criteria expression."),
    cursor: str | None = Query(default=None, description="Cursor returned by a previous page."),
) -> dict:
    """Return one page of records from a report."""
    try:
        page = await record_service.read(report, criteria, cursor)
    except (AuthError, RemoteApiError) as exc:
        raise _zoho_http_error(exc) from exc
    return {"records": page.records, "cursor": page.cursor}


@router.post(
    "/zoho/bulk-exports",
    response_model=BulkExportStatus,
    status_code=HTTPStatus.ACCEPTED,
)
async def enqueue_bulk_export(
    payload: BulkExportRequest,
    token_manager: Annotated[Any, Depends(get_token_manager)],
    queue_service: Annotated[Any, Depends(get_bulk_queue_service)],
) -> BulkExportStatus:
    """Record a bulk export and queue it for the background worker."""
    if not await token_manager.is_ready():
        raise HTTPException(
            status_code=HTTPStatus.SERVICE_UNAVAILABLE,
            detail="Zoho connector is not authorized.",
        )
    record = queue_service.enqueue_export(request=payload)
    logger.info("Queued bulk export", extra={"record_id": record.id, "report": record.report})
    return BulkExportStatus.from_record(record)


@router.get("/zoho/bulk-exports/{record_id}", response_model=BulkExportStatus)
async def get_bulk_export(
    record_id: str,
    history_store: Annotated[Any, Depends(get_bulk_history_store)],
) -> BulkExportStatus:
    record = history_store.get(record_id)
    if record is None:
        raise HTTPException(status_code=HTTPStatus.NOT_FOUND, detail="Bulk export not found.")
    return BulkExportStatus.from_record(record)


__all__ = ["router"]
