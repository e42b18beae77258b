"""FastAPI application: pull, push and health endpoints."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, StreamingResponse

from .models import TenantConfig
from .service import CodeService

_SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def get_service(request: Request) -> CodeService:
    return request.app.state.service


def get_tenant(
    service: Annotated[CodeService, Depends(get_service)],
    x_access_key: Annotated[str | None, Header()] = None,
    authorization: Annotated[str | None, Header()] = None,
) -> TenantConfig:
    """Resolve the caller's tenant from its access key."""
    key = x_access_key
    if not key and authorization and authorization.lower().startswith("bearer "):
        key = authorization[7:]
    if not key:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail="Access code required")

    tenant = service.tenants.get_tenant_by_access_key(key)
    if tenant is None:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail="Access code expired")
    return tenant


def _sse(payload: dict[str, object]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def create_app(service: CodeService) -> FastAPI:
    """Build the relay app. The lifespan starts and stops *service*."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await service.start()
        yield
        await service.stop()

    app = FastAPI(title="otp-relay", version="0.1.0", lifespan=lifespan)
    app.state.service = service

    @app.get("/health")
    async def health() -> JSONResponse:
        return JSONResponse({"status": "ok", "service": "otp-relay", **service.health()})

    @app.get("/ready")
    async def ready() -> JSONResponse:
        is_ready = service.started
        return JSONResponse(
            {"ready": is_ready},
            status_code=200 if is_ready else 503,
        )

    @app.get("/api/access/me")
    async def me(tenant: Annotated[TenantConfig, Depends(get_tenant)]) -> dict[str, object]:
        return {
            "authenticated": True,
            "tenantId": tenant.id,
            "displayName": tenant.label,
            "recipients": sorted(tenant.recipients),
        }

    @app.get("/api/codes")
    async def codes(
        tenant: Annotated[TenantConfig, Depends(get_tenant)],
        force: bool = Query(default=False),
    ) -> JSONResponse:
        response = await service.get_codes(tenant.id, force=force)
        return JSONResponse(response.to_payload())

    @app.get("/api/stream")
    async def stream(
        request: Request,
        tenant: Annotated[TenantConfig, Depends(get_tenant)],
    ) -> StreamingResponse:
        async def events() -> AsyncIterator[str]:
            updates = service.stream(tenant.id)
            try:
                async for event in updates:
                    if await request.is_disconnected():
                        break
                    if event is None:
                        yield ": keep-alive\n\n"
                    else:
                        yield _sse(event.to_payload())
            finally:
                await updates.aclose()

        return StreamingResponse(
            events(),
            media_type="text/event-stream; charset=utf-8",
            headers=_SSE_HEADERS,
        )

    return app
