"""
Unit tests for DecisionService.
"""

import itertools

import pytest
from unittest.mock import patch

from service_expenses.app.authz.service import DecisionService
from service_expenses.app.domain.models import (
    Expense, InboundRequest, Organization, User, GUEST
)
from shared.errors import PolicyLoadError
from shared.metrics import MetricsCollector

IDS = [0, 1, 2, 3, 17]


class TestDecisionService:
    """Test cases for DecisionService with the production policy."""

    @pytest.fixture
    def metrics(self):
        """Create an isolated metrics collector."""
        return MetricsCollector("expenses-test")

    @pytest.fixture
    def decisions(self, metrics):
        """Create DecisionService with the packaged policy."""
        return DecisionService.default(metrics=metrics)

    @pytest.fixture
    def user(self):
        return User(id=1, email="test@example.com", title="Accountant", organization_id=1)

    @pytest.mark.parametrize("actor,method,path,expected", [
        (GUEST, "GET", "/", True),
        (GUEST, "POST", "/", False),
        (GUEST, "GET", "/whoami", True),
        (GUEST, "PUT", "/expenses/submit", False),
        (User(email="test@example.com"), "PUT", "/expenses/submit", True),
        (GUEST, "GET", "/expenses/1", False),
        (GUEST, "GET", "/organizations/1", False),
        (User(id=1, email="a@b.c"), "GET", "/expenses/1", True),
        (User(id=1, email="a@b.c"), "GET", "/expenses/submit", False),
        (User(id=1, email="a@b.c"), "GET", "/organizations/2", True),
        (User(id=1, email="a@b.c"), "DELETE", "/expenses/1", False),
        (User(id=1, email="a@b.c"), "GET", "/admin", False),
    ])
    def test_request_decisions(self, decisions, actor, method, path, expected):
        """Test request-level decisions for the HTTP surface."""
        assert decisions.authorize(actor, method, InboundRequest(method, path)) is expected

    def test_unauthenticated_user_cannot_submit(self, decisions):
        """Test that a user without a credential is not authenticated."""
        request = InboundRequest("PUT", "/expenses/submit")

        assert decisions.authorize(User(id=5), "PUT", request) is False

    def test_owner_reads_expense(self, decisions):
        """Test the ownership scenario."""
        actor = User(id=1, email="test@example.com")

        assert decisions.authorize(actor, "read", Expense(id=1, user_id=1)) is True
        assert decisions.authorize(actor, "read", Expense(id=1, user_id=2)) is False

    @pytest.mark.parametrize("actor_id,owner_id", list(itertools.product(IDS, IDS)))
    def test_ownership_invariant(self, decisions, actor_id, owner_id):
        """Test that reading an expense is allowed iff the actor owns it."""
        actor = User(id=actor_id, email="user@example.com")
        expense = Expense(id=99, user_id=owner_id)

        assert decisions.authorize(actor, "read", expense) is (actor_id == owner_id)

    @pytest.mark.parametrize("member_of,org_id", list(itertools.product(IDS, IDS)))
    def test_organization_invariant(self, decisions, member_of, org_id):
        """Test that reading an organization is allowed iff the actor belongs to it."""
        actor = User(id=1, email="user@example.com", organization_id=member_of)

        assert decisions.authorize(actor, "read", Organization(id=org_id)) is (member_of == org_id)

    def test_guest_cannot_read_records(self, decisions):
        """Test that guests have no record access."""
        assert decisions.authorize(GUEST, "read", Expense(id=1, user_id=0)) is False
        assert decisions.authorize(GUEST, "read", Organization(id=0)) is False

    def test_default_deny_unknown_action(self, decisions, user):
        """Test that unmatched triples are denied."""
        assert decisions.authorize(user, "delete", Expense(id=1, user_id=1)) is False

    def test_deterministic(self, decisions, user):
        """Test that identical calls give identical answers."""
        expense = Expense(id=1, user_id=1)
        request = InboundRequest("GET", "/expenses/1")

        results = {decisions.authorize(user, "read", expense) for _ in range(50)}
        results_request = {decisions.authorize(user, "GET", request) for _ in range(50)}

        assert results == {True}
        assert results_request == {True}

    def test_fail_closed_on_unknown_resource(self, decisions, user, metrics):
        """Test that an unsupported resource type is denied without raising."""
        assert decisions.authorize(user, "read", {"id": 1, "owner": 1}) is False
        assert metrics.sample("authorization_errors_total", resource_kind="unknown") == 1.0

    def test_fail_closed_on_type_mismatch(self, metrics):
        """Test that a comparison fault is denied without raising."""
        decisions = DecisionService.from_text(
            'allow User read Expense if resource.owner == "1"', metrics=metrics
        )
        user = User(id=1, email="a@b.c")

        assert decisions.authorize(user, "read", Expense(id=1, user_id=1)) is False
        assert metrics.sample("authorization_errors_total", resource_kind="Expense") == 1.0
        assert metrics.sample(
            "authorization_decisions_total", decision="deny", resource_kind="Expense"
        ) == 1.0

    def test_fail_closed_on_unexpected_error(self, decisions, user):
        """Test that any evaluator failure is denied."""
        with patch.object(decisions._evaluator, "evaluate", side_effect=RuntimeError("boom")):
            assert decisions.authorize(user, "read", Expense(id=1, user_id=1)) is False

    def test_records_decisions(self, decisions, user, metrics):
        """Test decision metrics."""
        decisions.authorize(user, "read", Expense(id=1, user_id=1))
        decisions.authorize(user, "read", Expense(id=2, user_id=2))
        decisions.authorize(GUEST, "GET", InboundRequest("GET", "/"))

        assert metrics.sample(
            "authorization_decisions_total", decision="allow", resource_kind="Expense"
        ) == 1.0
        assert metrics.sample(
            "authorization_decisions_total", decision="deny", resource_kind="Expense"
        ) == 1.0
        assert metrics.sample(
            "authorization_decisions_total", decision="allow", resource_kind="Request"
        ) == 1.0

    def test_works_without_metrics(self, user):
        """Test that metrics are optional."""
        decisions = DecisionService.from_text("allow User read Expense")

        assert decisions.authorize(user, "read", Expense(id=1, user_id=2)) is True


class TestDecisionServiceConstruction:
    """Test cases for building a DecisionService."""

    def test_invalid_policy_is_fatal(self):
        """Test that a bad policy never produces a service."""
        with pytest.raises(PolicyLoadError):
            DecisionService.from_text("allow Nobody read Expense")

    def test_from_file(self, tmp_path):
        """Test loading the policy from a file."""
        path = tmp_path / "custom.policy"
        path.write_text("allow * GET Request\n", encoding="utf-8")

        decisions = DecisionService.from_file(str(path))

        assert len(decisions.policy) == 1
        assert decisions.authorize(GUEST, "GET", InboundRequest("GET", "/anything")) is True
        assert decisions.authorize(GUEST, "PUT", InboundRequest("PUT", "/anything")) is False

    def test_from_missing_file(self, tmp_path):
        """Test that a missing policy file is fatal."""
        with pytest.raises(PolicyLoadError):
            DecisionService.from_file(str(tmp_path / "nope.policy"))
