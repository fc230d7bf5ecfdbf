"""FastAPI route definitions for the short-link service.

API Endpoint Overview
=====================
::
    GET  /health
        └─ HealthResponse (200) or 503

    POST /api/shorten
        ├─ ShortenRequest (request body)
        └─ LinkCreated (201) or 409/422/503

    GET  /api/qr/:short_code
        └─ image/png (200) or 500

    GET  /:short_code
        └─ 301 Redirect, 404 or 410

Key Behaviours
===============
- Domain exceptions are mapped to HTTP status codes here and nowhere else.
- Shorten bodies are checked for shape only; field rules run in the service so
  a bad field answers 422 with {"field", "reason"}.
- A redirect queues its analytics event before responding and never waits
  for enrichment to finish.
- 301 is used for redirects; expired links answer 410 Gone.
"""

from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.responses import RedirectResponse

from shortlink.dependencies import AppResources, RequestContext, get_link_service, get_request_context, get_resources
from shortlink.enums import HealthStatus, ResolutionStatus
from shortlink.errors import AliasTaken, CodeExhausted, RenderFailed, ValidationFailed
from shortlink.link_service import LinkService
from shortlink.schemas import HealthResponse, LinkCreated, ShortenRequest

__all__ = ["router"]

router = APIRouter()


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(
    response: Response,
    ctx: RequestContext = Depends(get_request_context),
    resources: AppResources = Depends(get_resources),
) -> HealthResponse:
    db_status = HealthStatus.HEALTHY
    cache_status = HealthStatus.HEALTHY

    try:
        await resources.store.ping()
    except Exception as e:
        ctx.logger.error(f"Database health check failed: {e}")
        db_status = HealthStatus.UNHEALTHY

    try:
        await resources.cache.ping()
    except Exception as e:
        ctx.logger.error(f"Cache health check failed: {e}")
        cache_status = HealthStatus.UNHEALTHY

    status = (
        HealthStatus.HEALTHY
        if db_status is HealthStatus.HEALTHY and cache_status is HealthStatus.HEALTHY
        else HealthStatus.UNHEALTHY
    )
    if status is HealthStatus.UNHEALTHY:
        response.status_code = 503

    return HealthResponse(status=status, database=db_status, cache=cache_status)


@router.post("/api/shorten", response_model=LinkCreated, status_code=201, tags=["links"])
async def shorten_link(
    payload: ShortenRequest,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> LinkCreated:
    ctx.add_tag("link_creation")

    try:
        link = await service.create_link(
            payload.long_url,
            alias=payload.alias,
            context=payload.context,
            owner_id=ctx.owner_id,
        )
    except ValidationFailed as exc:
        raise HTTPException(status_code=422, detail={"field": exc.field, "reason": exc.reason}) from exc
    except AliasTaken as exc:
        raise HTTPException(status_code=409, detail="Custom alias is already taken.") from exc
    except CodeExhausted as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    ctx.logger.info(
        f"Link shortened: {link.short_code}",
        extra={"operation": "create_link", "short_code": link.short_code, "duration_ms": ctx.get_duration()},
    )
    return LinkCreated(
        short_code=link.short_code,
        short_url=ctx.settings.short_url(link.short_code),
        long_url=link.long_url,
        expires_at=link.expires_at,
    )


@router.get("/api/qr/{short_code}", tags=["links"], response_class=Response)
async def qr_code(
    short_code: str,
    service: LinkService = Depends(get_link_service),
) -> Response:
    try:
        png = await service.get_qr_image(short_code)
    except RenderFailed as exc:
        raise HTTPException(status_code=500, detail="Could not generate QR code.") from exc
    return Response(content=png, media_type="image/png")


@router.get("/{short_code}", tags=["redirect"])
async def redirect_to_url(
    short_code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> RedirectResponse:
    ctx.add_tag("redirect")

    resolution = await service.resolve(short_code)
    if resolution.status is ResolutionStatus.NOT_FOUND:
        ctx.logger.warning(f"Redirect failed - short code not found: {short_code}")
        raise HTTPException(status_code=404, detail="Short link not found")
    if resolution.status is ResolutionStatus.GONE:
        ctx.logger.info(f"Redirect refused - link expired: {short_code}")
        raise HTTPException(status_code=410, detail="This link has expired.")

    service.record_redirect_event(short_code, ctx.client_ip, ctx.user_agent, ctx.referrer)

    ctx.logger.info(
        f"Redirect successful: {short_code} -> {resolution.long_url}",
        extra={
            "operation": "redirect",
            "short_code": short_code,
            "cache_hit": resolution.cache_hit,
            "duration_ms": ctx.get_duration(),
        },
    )
    return RedirectResponse(url=resolution.long_url, status_code=301)
