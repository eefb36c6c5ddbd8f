from __future__ import annotations

from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.api.routers import auth, permission, role, tenant, user
from app.domain.errors import ConsoleError, ValidationError
from app.infra.db import check_db_ready
from app.infra.logging import get_logger, setup_logging

setup_logging()
log = get_logger(__name__)

app = FastAPI(
    title="tenant-console",
    description="Multi-tenant administration console with hierarchical permission/role authorization.",
    version="0.1.0",
)

app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(tenant.router, prefix="/api/system/tenant", tags=["tenant"])
app.include_router(permission.router, prefix="/api/system/permission", tags=["permission"])
app.include_router(role.router, prefix="/api/system/role", tags=["role"])
app.include_router(user.router, prefix="/api/system/user", tags=["user"])


@app.exception_handler(ConsoleError)
async def console_error_handler(_request: Request, exc: ConsoleError) -> JSONResponse:
    content: dict[str, Any] = {"success": False, "message": str(exc)}
    if isinstance(exc, ValidationError) and exc.field:
        content["field"] = exc.field
    if exc.status_code >= 500:
        log.error("Unhandled console error %s", exc)
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(HTTPException)
async def http_exception_handler(_request: Request, exc: HTTPException) -> JSONResponse:
    content: dict[str, Any] = {"success": False}
    if isinstance(exc.detail, str):
        content["message"] = exc.detail
    else:
        content["detail"] = exc.detail
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    errors: dict[str, str] = {}
    for error in exc.errors():
        if "loc" not in error or "msg" not in error:
            continue
        errors[str(error["loc"][-1])] = error["msg"]
    log.info("Request validation error %s", errors)
    return JSONResponse(
        status_code=400,
        content=jsonable_encoder({"success": False, "message": "Invalid request data", "errors": errors}),
    )


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    checks = {"db": "ok" if db_ok else "fail"}
    if not db_ok:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
