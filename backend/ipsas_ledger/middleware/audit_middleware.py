"""READ_ACCESS audit events for ledger views.

Successful GETs under any of the configured prefixes (the transaction
register by default) are recorded with the caller, the query string and the
client address.  The caller comes from ``request.state._audit_user``, set by
``get_current_user``.
"""

from __future__ import annotations

import dataclasses

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from ipsas_ledger.services.audit_service import AuditWriter, build_event


class AuditReadAccessMiddleware(BaseHTTPMiddleware):

    def __init__(self, app, writer: AuditWriter, prefixes: list[str]) -> None:
        super().__init__(app)
        self.writer = writer
        self.prefixes = tuple(prefixes)

    def _audited(self, request: Request) -> bool:
        return request.method == "GET" and request.url.path.startswith(self.prefixes)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        response = await call_next(request)
        if not self._audited(request) or not 200 <= response.status_code < 300:
            return response

        path = request.url.path
        user = getattr(request.state, "_audit_user", None) or {}
        event = build_event(
            "read." + path.strip("/").replace("/", "."),
            user_id=user.get("user_id"),
            resource_type="endpoint",
            resource_id=path,
            details={
                "query_params": dict(request.query_params),
                "status_code": response.status_code,
            },
        )
        if request.client:
            event = dataclasses.replace(event, ip_address=request.client.host)
        self.writer.fire_and_forget(event)
        return response
