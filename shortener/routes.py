"""FastAPI route definitions for the URL shortener REST API.

This module is a thin HTTP layer: it parses requests, threads the caller's
identity (``X-User-ID``) into the service as an explicit argument and maps the
service's error taxonomy to status codes.

API Endpoint Overview
=====================
::
    GET    /health                          HealthResponse (200)
    POST   /api/urls                        URLResponse (201) or 400/409/503
    POST   /api/urls/bulk                   BulkURLResponse (201)
    GET    /api/urls                        list[URLResponse] (200) or 401
    GET    /api/urls/{code}                 URLResponse (200) or 404
    GET    /api/urls/{code}/stats           ClickStats (200) or 404
    GET    /api/urls/{code}/protected       PasswordProtectedResponse (200)
    POST   /api/urls/{code}/verify          VerifyPasswordResponse (200) or 401/404/410
    POST   /api/urls/{code}/deactivate      URLResponse (200) or 403/404
    DELETE /api/urls/{url_id}               204 or 403/404
    GET    /{code}                          307 Redirect or 403/404/410

Error Mapping
=============
::
    InvalidURLError          400      UnauthorizedError        403
    AliasExistsError         409      InvalidPasswordError     401
    CodeSpaceExhaustedError  503      OperationTimeoutError    504
    URLNotFoundError         404      URLExpiredError          410
    URLInactiveError         410      password-protected GET   403

Endpoints:
    /health:  Database and cache status.
    /api/urls...:  Create, inspect and manage short URLs.
    /:code:  Redirect to the original URL and record the click.
"""

import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from fastapi.responses import RedirectResponse

from shortener.dependencies import RequestContext, get_request_context, get_service_manager, get_url_service
from shortener.enums import HealthStatus
from shortener.exceptions import (
    AliasExistsError,
    CodeSpaceExhaustedError,
    InvalidPasswordError,
    InvalidURLError,
    OperationTimeoutError,
    ShortenerError,
    UnauthorizedError,
    URLExpiredError,
    URLInactiveError,
    URLNotFoundError,
)
from shortener.schemas import (
    BulkURLCreate,
    BulkURLResponse,
    ClickEvent,
    ClickStats,
    HealthResponse,
    PasswordProtectedResponse,
    URLCreate,
    URLResponse,
    VerifyPasswordRequest,
    VerifyPasswordResponse,
)
from shortener.url_service import URLShorteningService

__all__ = ["router"]

router = APIRouter()

_ERROR_STATUS: dict[type[ShortenerError], tuple[int, str]] = {
    InvalidURLError: (400, "Invalid URL format"),
    AliasExistsError: (409, "Custom alias already exists"),
    CodeSpaceExhaustedError: (503, "Could not allocate a short code, please retry"),
    URLNotFoundError: (404, "URL not found"),
    URLExpiredError: (410, "URL has expired"),
    URLInactiveError: (410, "URL is no longer active"),
    UnauthorizedError: (403, "Not allowed to modify this URL"),
    InvalidPasswordError: (401, "Invalid password"),
    OperationTimeoutError: (504, "Storage timed out"),
}


def _http_error(exc: ShortenerError, ctx: RequestContext) -> HTTPException:
    status_code, detail = _ERROR_STATUS.get(type(exc), (500, "Internal server error"))
    ctx.logger.info(f"Request failed with {status_code}: {exc} ({ctx.get_duration():.1f}ms)")
    return HTTPException(status_code=status_code, detail=detail)


def _parse_day(value: str | None, name: str) -> datetime.date | None:
    if value is None:
        return None
    try:
        return datetime.date.fromisoformat(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid '{name}' date, expected YYYY-MM-DD") from exc


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(manager=Depends(get_service_manager)) -> HealthResponse:
    db_status = await manager.ping_database()
    cache_status = await manager.ping_cache()
    # Running without a cache is a supported configuration.
    return HealthResponse(status=db_status, database=db_status, cache=cache_status)


@router.post("/api/urls", response_model=URLResponse, status_code=201, tags=["urls"])
async def create_url(
    payload: URLCreate,
    ctx: RequestContext = Depends(get_request_context),
    service: URLShorteningService = Depends(get_url_service),
) -> URLResponse:
    ctx.add_tag("url_creation")
    try:
        url = await service.create_short_url(payload, owner_id=ctx.user_id)
    except ShortenerError as exc:
        raise _http_error(exc, ctx) from exc
    return URLResponse.from_model(url, ctx.settings.BASE_URL)


@router.post("/api/urls/bulk", response_model=BulkURLResponse, status_code=201, tags=["urls"])
async def bulk_create_urls(
    payload: BulkURLCreate,
    ctx: RequestContext = Depends(get_request_context),
    service: URLShorteningService = Depends(get_url_service),
) -> BulkURLResponse:
    ctx.add_tag("bulk_creation")
    return await service.bulk_create(payload.urls, owner_id=ctx.user_id)


@router.get("/api/urls", response_model=list[URLResponse], tags=["urls"])
async def list_urls(
    limit: int | None = Query(None, ge=1, le=100),
    offset: int = Query(0, ge=0),
    ctx: RequestContext = Depends(get_request_context),
    service: URLShorteningService = Depends(get_url_service),
) -> list[URLResponse]:
    if not ctx.user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    try:
        urls = await service.list_user_urls(ctx.user_id, limit=limit, offset=offset)
    except ShortenerError as exc:
        raise _http_error(exc, ctx) from exc
    return [URLResponse.from_model(url, ctx.settings.BASE_URL) for url in urls]


@router.get("/api/urls/{code}", response_model=URLResponse, tags=["urls"])
async def get_url_info(
    code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: URLShorteningService = Depends(get_url_service),
) -> URLResponse:
    try:
        url = await service.get_url_info(code)
    except ShortenerError as exc:
        raise _http_error(exc, ctx) from exc
    return URLResponse.from_model(url, ctx.settings.BASE_URL)


@router.get("/api/urls/{code}/stats", response_model=ClickStats, tags=["urls"])
async def get_stats(
    code: str,
    date_from: str | None = Query(None, alias="from"),
    date_to: str | None = Query(None, alias="to"),
    ctx: RequestContext = Depends(get_request_context),
    service: URLShorteningService = Depends(get_url_service),
) -> ClickStats:
    start_day = _parse_day(date_from, "from")
    end_day = _parse_day(date_to, "to")
    start = datetime.datetime.combine(start_day, datetime.time.min, datetime.timezone.utc) if start_day else None
    # "to" is inclusive of the whole day.
    end = datetime.datetime.combine(end_day, datetime.time.max, datetime.timezone.utc) if end_day else None
    try:
        return await service.get_stats(code, start, end)
    except ShortenerError as exc:
        raise _http_error(exc, ctx) from exc


@router.get("/api/urls/{code}/protected", response_model=PasswordProtectedResponse, tags=["urls"])
async def check_password_protected(
    code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: URLShorteningService = Depends(get_url_service),
) -> PasswordProtectedResponse:
    try:
        protected = await service.is_password_protected(code)
    except ShortenerError as exc:
        raise _http_error(exc, ctx) from exc
    return PasswordProtectedResponse(password_protected=protected)


@router.post("/api/urls/{code}/verify", response_model=VerifyPasswordResponse, tags=["urls"])
async def verify_password(
    code: str,
    payload: VerifyPasswordRequest,
    ctx: RequestContext = Depends(get_request_context),
    service: URLShorteningService = Depends(get_url_service),
) -> VerifyPasswordResponse:
    try:
        url = await service.verify_password(code, payload.password)
    except ShortenerError as exc:
        raise _http_error(exc, ctx) from exc
    await service.record_click(_click_event(url.short_code, ctx))
    return VerifyPasswordResponse(original_url=url.original_url)


@router.post("/api/urls/{code}/deactivate", response_model=URLResponse, tags=["urls"])
async def deactivate_url(
    code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: URLShorteningService = Depends(get_url_service),
) -> URLResponse:
    try:
        url = await service.deactivate_url(code, owner_id=ctx.user_id)
    except ShortenerError as exc:
        raise _http_error(exc, ctx) from exc
    return URLResponse.from_model(url, ctx.settings.BASE_URL)


@router.delete("/api/urls/{url_id}", status_code=204, tags=["urls"])
async def delete_url(
    url_id: str,
    ctx: RequestContext = Depends(get_request_context),
    service: URLShorteningService = Depends(get_url_service),
) -> Response:
    try:
        await service.delete_url(url_id, owner_id=ctx.user_id)
    except ShortenerError as exc:
        raise _http_error(exc, ctx) from exc
    return Response(status_code=204)


@router.get("/{code}", tags=["redirect"])
async def redirect_to_url(
    code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: URLShorteningService = Depends(get_url_service),
) -> RedirectResponse:
    ctx.add_tag("redirect")
    try:
        url = await service.resolve(code)
    except ShortenerError as exc:
        raise _http_error(exc, ctx) from exc

    if url.is_password_protected:
        raise HTTPException(
            status_code=403,
            detail=f"This URL is password protected. Use POST /api/urls/{code}/verify to access.",
        )

    await service.record_click(_click_event(url.short_code, ctx))
    ctx.logger.info(f"Redirect {code} -> {url.original_url} ({ctx.get_duration():.1f}ms)")
    return RedirectResponse(url=url.original_url, status_code=307)


def _click_event(short_code: str, ctx: RequestContext) -> ClickEvent:
    return ClickEvent(
        short_code=short_code,
        ip_address=ctx.client_ip,
        user_agent=ctx.user_agent or "",
        referrer=ctx.referrer,
    )
