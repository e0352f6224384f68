"""
Authentication and authorization pipeline.

Two stages per request:

1. Authenticate: the credential header is resolved to a ``User`` through the
   entity store. A missing credential or any lookup failure yields the
   ``Guest`` actor; authentication never aborts the request.
2. Authorize: the decision service is asked whether the actor may perform
   the request method on the request itself. Deny short-circuits with a
   plain-text 403.

The resulting :class:`RequestScope` is attached to the request and handed to
route handlers through the :func:`current_scope` dependency.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional

from fastapi import Request
from fastapi.responses import PlainTextResponse, Response

from shared.errors import EntityLookupError
from shared.logging import clear_context, get_logger, set_request_id, set_user_context

from ..authz.service import DecisionService
from ..domain.models import GUEST, Actor, InboundRequest, User
from ..persistence.store import EntityStore

FORBIDDEN_BODY = "forbidden"
SCOPE_STATE_KEY = "scope"


@dataclass(frozen=True)
class RequestScope:
    """Per-request authorization context."""
    actor: Actor
    request: InboundRequest
    request_id: str = ""


def forbidden() -> Response:
    """Plain-text 403; carries no evaluation detail."""
    return PlainTextResponse(FORBIDDEN_BODY, status_code=403)


class AuthMiddleware:
    """Resolves the actor for a request and enforces the request-level policy."""

    def __init__(self, store: EntityStore, decisions: DecisionService, credential_header: str = "user",
                 exempt_paths: Iterable[str] = ()):
        self.store = store
        self.decisions = decisions
        self.credential_header = credential_header
        self.exempt_paths = frozenset(exempt_paths)
        self.logger = get_logger("expenses.auth_middleware")

    async def authenticate(self, credential: Optional[str]) -> Actor:
        """Return the user for ``credential``, or ``GUEST``."""
        if not credential:
            return GUEST
        try:
            user = await self.store.user_by_email(credential)
        except EntityLookupError as e:
            self.logger.info(
                "Authentication failed, continuing as guest",
                not_found=e.not_found,
                error=e.message
            )
            return GUEST
        except Exception as e:
            self.logger.error(
                "Authentication lookup error, continuing as guest",
                error=str(e),
                exc_info=True
            )
            return GUEST

        self.logger.debug("Request authenticated", user_id=user.id)
        return user

    def authorize(self, scope: RequestScope) -> bool:
        """Request-level check: may the actor use this method on this path?"""
        return self.decisions.authorize(scope.actor, scope.request.method, scope.request)

    async def process_request(self, request: Request) -> Optional[RequestScope]:
        """Run both stages; ``None`` means the request is denied."""
        request_id = set_request_id(request.headers.get("x-request-id"))
        actor = await self.authenticate(request.headers.get(self.credential_header))
        set_user_context(str(actor.id) if isinstance(actor, User) else None)

        scope = RequestScope(
            actor=actor,
            request=InboundRequest(method=request.method, path=request.url.path),
            request_id=request_id
        )
        if not self.authorize(scope):
            self.logger.warning(
                "Request forbidden",
                actor=str(actor),
                method=scope.request.method,
                path=scope.request.path
            )
            return None
        return scope

    async def dispatch(self, request: Request,
                       call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        """HTTP middleware entry point."""
        if request.url.path in self.exempt_paths:
            return await call_next(request)
        try:
            scope = await self.process_request(request)
            if scope is None:
                return forbidden()
            setattr(request.state, SCOPE_STATE_KEY, scope)
            return await call_next(request)
        finally:
            clear_context()


def current_scope(request: Request) -> RequestScope:
    """FastAPI dependency returning the scope built by :class:`AuthMiddleware`."""
    scope = getattr(request.state, SCOPE_STATE_KEY, None)
    if scope is None:
        # Routes outside the pipeline see an anonymous scope
        return RequestScope(actor=GUEST, request=InboundRequest(request.method, request.url.path))
    return scope
