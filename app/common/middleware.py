"""
Request middleware: tenant and acting-user resolution, security headers
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from uuid import UUID
import logging

logger = logging.getLogger(__name__)


def _header_error(code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": {"code": code, "message": message}}
    )


class TenantMiddleware(BaseHTTPMiddleware):
    """
    Resolve who is acting on whose books.

    X-Company-ID is required on every billing route and becomes
    ``request.state.tenant_id``. X-User-ID is optional and becomes
    ``request.state.user_id``; it ends up in created_by/updated_by.
    """

    EXEMPT_PREFIXES = ("/docs", "/redoc", "/openapi.json", "/health")

    def _is_exempt(self, request: Request) -> bool:
        path = request.url.path
        return path == "/" or request.method == "OPTIONS" or path.startswith(self.EXEMPT_PREFIXES)

    async def dispatch(self, request: Request, call_next):
        if self._is_exempt(request):
            return await call_next(request)

        company_header = request.headers.get("X-Company-ID")
        if not company_header:
            return _header_error("missing_tenant", "Missing X-Company-ID header")
        try:
            tenant_id = UUID(company_header)
        except ValueError:
            return _header_error("invalid_tenant", "Invalid X-Company-ID format. Must be a valid UUID")

        user_header = request.headers.get("X-User-ID")
        user_id = None
        if user_header:
            try:
                user_id = UUID(user_header)
            except ValueError:
                return _header_error("invalid_user", "Invalid X-User-ID format. Must be a valid UUID")

        request.state.tenant_id = tenant_id
        request.state.user_id = user_id
        logger.debug(f"{request.method} {request.url.path} tenant={tenant_id} user={user_id}")

        response = await call_next(request)
        response.headers["X-Tenant-ID"] = str(tenant_id)
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    HEADERS = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Cache-Control": "no-store",
    }

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for name, value in self.HEADERS.items():
            response.headers.setdefault(name, value)
        return response
