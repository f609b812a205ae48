from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from aauth.runtime.errors import AuthError
from aauth.util.logging import log_event

_log = logging.getLogger("aauth.http")

# AuthError.kind -> HTTP status
_KIND_STATUS = {
    "malformed_proof": 400,
    "unauthorized": 403,
    "not_found": 404,
    "resource": 409,
}


@dataclass(frozen=True, slots=True)
class ApiError(Exception):
    status_code: int
    code: str
    message: str
    details: Dict[str, Any]
    kind: str = "api"

    @staticmethod
    def bad_request(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(400, code, message, details or {}, "malformed_proof")

    @staticmethod
    def not_found(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(404, code, message, details or {}, "not_found")

    @staticmethod
    def internal(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(500, code, message, details or {}, "internal")

    @staticmethod
    def from_auth_error(e: AuthError) -> "ApiError":
        details = e.details if isinstance(e.details, dict) else ({} if e.details is None else {"value": e.details})
        return ApiError(_KIND_STATUS.get(e.kind, 400), e.code, e.reason, details, e.kind)

    def to_response(self) -> JSONResponse:
        return JSONResponse(
            status_code=self.status_code,
            content={
                "ok": False,
                "error": {"code": self.code, "message": self.message, "kind": self.kind, "details": self.details},
            },
        )


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def _api_error(request: Request, exc: ApiError) -> JSONResponse:
        return exc.to_response()

    @app.exception_handler(AuthError)
    async def _auth_error(request: Request, exc: AuthError) -> JSONResponse:
        err = ApiError.from_auth_error(exc)
        log_event(_log, "request_rejected", path=str(request.url.path), code=err.code, kind=err.kind)
        return err.to_response()

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [{"loc": [str(p) for p in e.get("loc", ())], "msg": str(e.get("msg", ""))} for e in exc.errors()]
        return ApiError.bad_request("invalid_payload", "request body failed validation", {"errors": errors}).to_response()
