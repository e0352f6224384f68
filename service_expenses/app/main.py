"""
Expenses service.
"""

from typing import Optional

from fastapi import Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse, RedirectResponse
from pydantic import ValidationError as PydanticValidationError

from shared.base_service import BaseService, HEALTH_PATH, METRICS_PATH
from shared.config import ServiceConfig
from shared.errors import AuthorizationError, EntityLookupError, ServiceError

from .auth.middleware import AuthMiddleware, RequestScope, current_scope, forbidden
from .authz.service import DecisionService
from .domain.models import (
    ExpenseCreateRequest, ExpenseResponse, OrganizationResponse, User, describe
)
from .persistence.postgres import PostgreSQLEntityStore
from .persistence.store import EntityStore, InMemoryEntityStore

SERVICE_NAME = "expenses"
DEFAULT_PORT = 8000


class ExpensesService(BaseService):
    """Expenses service implementation."""

    def __init__(self, config: Optional[ServiceConfig] = None,
                 store: Optional[EntityStore] = None,
                 decisions: Optional[DecisionService] = None):
        self._store_override = store
        self._decisions_override = decisions
        super().__init__(SERVICE_NAME, DEFAULT_PORT, config)
        self._setup_expenses_routes()

    def _setup_components(self):
        """Load the policy and open the entity store.

        A policy that fails to load raises here and the service never starts.
        """
        self.decisions = self._decisions_override or self._load_decisions()
        self.store = self._store_override or self._create_store()
        self.auth = AuthMiddleware(
            self.store,
            self.decisions,
            credential_header=self.config.credential_header,
            exempt_paths=(HEALTH_PATH, METRICS_PATH)
        )

    def _load_decisions(self) -> DecisionService:
        if self.config.policy_file:
            self.logger.info("Loading policy file", path=self.config.policy_file)
            return DecisionService.from_file(self.config.policy_file, metrics=self.metrics)
        return DecisionService.default(metrics=self.metrics)

    def _create_store(self) -> EntityStore:
        backend = self.config.store_backend.lower()
        if backend == "postgres":
            return PostgreSQLEntityStore(self.config.postgres_dsn)
        if backend == "memory":
            if self.config.seed_demo_data:
                return InMemoryEntityStore.with_demo_data()
            return InMemoryEntityStore()
        raise ServiceError(f"unknown store backend {backend!r}", {"store_backend": backend})

    def _setup_middleware(self):
        """Authorization sits inside the timing middleware."""
        self.app.middleware("http")(self.auth.dispatch)
        super()._setup_middleware()

    async def _read_body(self, request: Request) -> bytes:
        """Read the request body, never buffering more than ``max_body_bytes``."""
        limit = self.config.max_body_bytes
        declared = request.headers.get("content-length")
        if declared is not None and declared.isdigit() and int(declared) > limit:
            raise HTTPException(status_code=400, detail="request body too large")

        chunks = []
        size = 0
        async for chunk in request.stream():
            size += len(chunk)
            if size > limit:
                self.logger.info("Request body over limit", limit=limit)
                raise HTTPException(status_code=400, detail="request body too large")
            chunks.append(chunk)
        return b"".join(chunks)

    def _setup_expenses_routes(self):
        """Set up expenses-specific routes."""

        @self.app.exception_handler(AuthorizationError)
        async def authorization_error_handler(request: Request, exc: AuthorizationError):
            """Record-level denials look exactly like request-level ones."""
            self.logger.warning("Record access forbidden", message=exc.message, details=exc.details)
            return forbidden()

        @self.app.get("/", response_class=PlainTextResponse)
        async def hello(scope: RequestScope = Depends(current_scope)):
            """Greeting."""
            if not scope.actor.is_authenticated:
                return "hello guest user"
            return f"hello {scope.actor.email}"

        @self.app.get("/whoami", response_class=PlainTextResponse)
        async def whoami(scope: RequestScope = Depends(current_scope)):
            """Describe the current user."""
            actor = scope.actor
            if not actor.is_authenticated:
                return "guest user"

            try:
                organization = await self.store.organization_by_id(actor.organization_id)
            except EntityLookupError as e:
                self.logger.error("Error fetching organization", user_id=actor.id, error=e.message)
                raise HTTPException(status_code=500, detail="failed to fetch organization")

            return f"You are {actor.email}, the {actor.title} at {organization.name}"

        @self.app.put("/expenses/submit")
        async def submit_expense(request: Request, scope: RequestScope = Depends(current_scope)):
            """Create an expense owned by the caller, then redirect to it."""
            body = await self._read_body(request)

            try:
                payload = ExpenseCreateRequest.model_validate_json(body)
            except PydanticValidationError as e:
                self.logger.info("JSON parse error", error=str(e))
                raise HTTPException(status_code=400, detail="failed to parse JSON")

            # Owner is always the caller
            if payload.user_id:
                raise HTTPException(status_code=400, detail="setting user ID for expense not allowed")

            actor = scope.actor
            if not isinstance(actor, User):
                raise AuthorizationError("expense submission requires a user", {"actor": describe(actor)})

            try:
                expense = await self.store.create_expense(actor.id, payload.amount, payload.description)
            except EntityLookupError as e:
                self.logger.error("Error saving expense", user_id=actor.id, error=e.message)
                raise HTTPException(status_code=500, detail="failed saving expense")

            return RedirectResponse(f"/expenses/{expense.id}", status_code=307)

        @self.app.get("/expenses/{expense_id:int}", response_model=ExpenseResponse)
        async def get_expense(expense_id: int, scope: RequestScope = Depends(current_scope)):
            """Read one expense; only its owner may see it."""
            try:
                expense = await self.store.expense_by_id(expense_id)
            except EntityLookupError as e:
                if e.not_found:
                    raise HTTPException(status_code=404, detail="unable to find expense")
                raise HTTPException(status_code=500, detail="failed to fetch expense")

            if not self.decisions.authorize(scope.actor, "read", expense):
                raise AuthorizationError("read denied", {"expense_id": expense_id})

            return ExpenseResponse.from_entity(expense)

        @self.app.get("/organizations/{organization_id:int}", response_model=OrganizationResponse)
        async def get_organization(organization_id: int, scope: RequestScope = Depends(current_scope)):
            """Read one organization; only its members may see it."""
            try:
                organization = await self.store.organization_by_id(organization_id)
            except EntityLookupError as e:
                if e.not_found:
                    raise HTTPException(status_code=404, detail="unable to find organization")
                raise HTTPException(status_code=500, detail="failed to fetch organization")

            if not self.decisions.authorize(scope.actor, "read", organization):
                raise AuthorizationError("read denied", {"organization_id": organization_id})

            return OrganizationResponse.from_entity(organization)

    async def _check_dependencies(self):
        """Check expenses service dependencies."""
        try:
            healthy = await self.store.health_check()
        except Exception:
            healthy = False
        return {"entity_store": "ok" if healthy else "error"}

    async def start(self):
        """Start expenses service components."""
        await self.store.start()
        self.logger.info("Expenses service started", rules=len(self.decisions.policy))

    async def stop(self):
        """Stop expenses service components."""
        await self.store.stop()
        self.logger.info("Expenses service stopped")


def create_app(config: Optional[ServiceConfig] = None):
    """Create expenses service application."""
    service = ExpensesService(config)
    return service.app


if __name__ == "__main__":
    service = ExpensesService()
    service.run()
