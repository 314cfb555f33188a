from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel

from guard_core import PublishRejectedError, SecurityFilter, load_config
from guard_core.ingress import IngressAction

from .settings import GuardSettings
from .upstream import UpstreamClient, UpstreamError

log = logging.getLogger(__name__)


class PublishReq(BaseModel):
    name: str
    version: str
    size: Optional[int] = None


class WhitelistPackageReq(BaseModel):
    name: str
    version_range: Optional[str] = None


class WhitelistPatternReq(BaseModel):
    pattern: str


def make_app(
    settings: GuardSettings,
    security_filter: Optional[SecurityFilter] = None,
    upstream: Optional[UpstreamClient] = None,
) -> FastAPI:
    if security_filter is None:
        security_filter = SecurityFilter(load_config(settings.config_path))
    if upstream is None:
        upstream = UpstreamClient(settings.upstream_url, timeout=settings.upstream_timeout)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        security_filter.close()

    app = FastAPI(title="Registry Guard", version="0.1.0", lifespan=lifespan)
    app.state.security_filter = security_filter

    @app.get("/health")
    def health():
        return {"ok": True}

    @app.get("/-/security/summary")
    def summary():
        return security_filter.summary()

    @app.post("/-/security/validate-publish")
    def validate_publish(req: PublishReq, request: Request):
        try:
            security_filter.validate_publish(req.name, req.version, req.size)
        except PublishRejectedError as e:
            remote = request.client.host if request.client else None
            log.warning("publish of %s@%s rejected (remote=%s)", req.name, req.version, remote)
            return JSONResponse(
                status_code=403,
                content={"error": "Publish rejected", "package": req.name, "version": req.version, "reason": str(e)},
            )
        return {"ok": True, "name": req.name, "version": req.version}

    @app.post("/-/security/whitelist/packages")
    def whitelist_add(req: WhitelistPackageReq):
        security_filter.whitelist.add_package(req.name, req.version_range)
        return {"ok": True, "name": req.name, "version_range": req.version_range}

    @app.delete("/-/security/whitelist/packages/{name:path}")
    def whitelist_remove(name: str):
        security_filter.whitelist.remove_package(name)
        return {"ok": True, "name": name}

    @app.post("/-/security/whitelist/patterns")
    def whitelist_pattern(req: WhitelistPatternReq):
        security_filter.whitelist.add_pattern(req.pattern)
        return {"ok": True, "pattern": req.pattern}

    @app.get("/{path:path}")
    async def package_request(path: str, request: Request):
        raw_path = request.url.path
        decision = security_filter.handle_request(raw_path)
        if decision.action is not IngressAction.ADMIT:
            return JSONResponse(status_code=decision.status_code, content=decision.body)
        if decision.request is None:
            raise HTTPException(status_code=404, detail="not found")

        if decision.request.is_tarball:
            return RedirectResponse(upstream.url_for(raw_path), status_code=307)

        name = decision.request.package_name
        try:
            document = await asyncio.to_thread(upstream.fetch_metadata, name)
        except UpstreamError as e:
            log.error(f"upstream fetch failed for {name}: {e}")
            raise HTTPException(status_code=502, detail="upstream registry unavailable")
        if document is None:
            raise HTTPException(status_code=404, detail="not found")

        filtered = await security_filter.filter_metadata(document)
        return JSONResponse(status_code=200, content=filtered)

    return app
