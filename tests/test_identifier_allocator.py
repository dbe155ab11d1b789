"""
Tests for the Identifier Allocator
==================================

Verifies:
1. Category tokens derive from the category name (Security -> SEC)
2. The smallest unused sequence number is allocated, reusing freed slots
3. Token collisions resolve per strategy (extend, strict, explicit registry)
4. Exhausted identifier spaces raise CapacityExceededError
5. Scenario identifiers are scoped to their use case
"""
import pytest

from ucm.errors import CapacityExceededError, NotFoundError, TokenCollisionError
from ucm.identifiers import (
    IdentifierAllocator,
    category_key,
    derive_token,
    parse_scenario_id,
    parse_use_case_id,
    smallest_unused,
)
from ucm.models import SCENARIO, USE_CASE, Scenario, UseCase


def _store_use_case(repository, use_case_id, category, scenario_ids=()):
    repository.create(UseCase(
        id=use_case_id, title=f"Use case {use_case_id}", category=category,
        scenario_ids=list(scenario_ids),
    ))


# =============================================================================
# Helpers
# =============================================================================

class TestHelpers:

    @pytest.mark.parametrize("category,token", [
        ("Security", "SEC"),
        ("api", "API"),
        ("User Management", "USE"),
        ("QA", "QA"),
        ("!!!", "GEN"),
        ("2fa-login", "2FA"),
    ])
    def test_derive_token(self, category, token):
        assert derive_token(category) == token

    def test_category_key_ignores_case_and_spacing(self):
        assert category_key("  User   Management ") == category_key("user management")

    def test_parse_ids(self):
        assert parse_use_case_id("UC-SEC-012") == ("UC", "SEC", 12)
        assert parse_use_case_id("not-an-id") is None
        assert parse_scenario_id("UC-SEC-001-S07") == ("UC-SEC-001", 7)
        assert parse_scenario_id("UC-SEC-001") is None

    def test_smallest_unused(self):
        assert smallest_unused([], 999, "x") == 1
        assert smallest_unused([1, 2, 4], 999, "x") == 3
        assert smallest_unused([2, 3], 999, "x") == 1

    def test_smallest_unused_full(self):
        with pytest.raises(CapacityExceededError) as exc_info:
            smallest_unused([1, 2, 3], 3, "UC-SEC")
        assert exc_info.value.capacity == 3
        assert exc_info.value.scope == "UC-SEC"


# =============================================================================
# Use case allocation
# =============================================================================

class TestUseCaseAllocation:

    def test_first_id(self, repository):
        allocator = IdentifierAllocator(repository)
        assert allocator.allocate("Security") == "UC-SEC-001"

    def test_sequence_grows(self, repository):
        allocator = IdentifierAllocator(repository)
        _store_use_case(repository, "UC-SEC-001", "Security")
        assert allocator.allocate("Security") == "UC-SEC-002"

    def test_freed_slot_is_reused(self, repository):
        """Deleting UC-SEC-002 makes it the next allocated id."""
        allocator = IdentifierAllocator(repository)
        for n in (1, 2, 3):
            _store_use_case(repository, f"UC-SEC-00{n}", "Security")
        repository.delete(USE_CASE, "UC-SEC-002")
        assert allocator.allocate("Security") == "UC-SEC-002"

    def test_categories_have_independent_sequences(self, repository):
        allocator = IdentifierAllocator(repository)
        _store_use_case(repository, "UC-SEC-001", "Security")
        assert allocator.allocate("Billing") == "UC-BIL-001"

    def test_category_match_is_case_insensitive(self, repository):
        allocator = IdentifierAllocator(repository)
        _store_use_case(repository, "UC-SEC-001", "Security")
        assert allocator.allocate("security") == "UC-SEC-002"

    def test_custom_prefix(self, repository):
        allocator = IdentifierAllocator(repository, prefix="req")
        assert allocator.allocate("Security") == "REQ-SEC-001"

    def test_capacity_exceeded(self, repository):
        allocator = IdentifierAllocator(repository, sequence_width=1)
        for n in range(1, 10):
            _store_use_case(repository, f"UC-SEC-{n}", "Security")
        with pytest.raises(CapacityExceededError):
            allocator.allocate("Security")

    def test_only_use_cases_are_category_scoped(self, repository):
        with pytest.raises(ValueError):
            IdentifierAllocator(repository).allocate("Security", SCENARIO)

    def test_unknown_strategy(self, repository):
        with pytest.raises(ValueError):
            IdentifierAllocator(repository, token_strategy="random")


class TestTokenCollisions:
    """Security and Secrets both derive SEC."""

    def test_extend_uses_longer_prefix(self, repository):
        _store_use_case(repository, "UC-SEC-001", "Security")
        allocator = IdentifierAllocator(repository, token_strategy="extend")
        assert allocator.token_for("Secrets") == "SECR"
        assert allocator.allocate("Secrets") == "UC-SECR-001"

    def test_extended_token_is_stable(self, repository):
        """Once stored, a category keeps the token of its existing ids."""
        _store_use_case(repository, "UC-SEC-001", "Security")
        _store_use_case(repository, "UC-SECR-001", "Secrets")
        allocator = IdentifierAllocator(repository)
        assert allocator.allocate("secrets") == "UC-SECR-002"
        assert allocator.allocate("Security") == "UC-SEC-002"

    def test_extend_falls_back_to_digit_suffix(self, repository):
        _store_use_case(repository, "UC-ABC-001", "Abc")
        allocator = IdentifierAllocator(repository)
        assert allocator.token_for("A.B.C") == "ABC2"

    def test_strict_raises(self, repository):
        _store_use_case(repository, "UC-SEC-001", "Security")
        allocator = IdentifierAllocator(repository, token_strategy="strict")
        with pytest.raises(TokenCollisionError) as exc_info:
            allocator.allocate("Secrets")
        assert exc_info.value.token == "SEC"
        assert exc_info.value.owner == "security"

    def test_registry_resolves_strict_collision(self, repository):
        _store_use_case(repository, "UC-SEC-001", "Security")
        allocator = IdentifierAllocator(
            repository, token_strategy="strict", category_tokens={"Secrets": "scr"},
        )
        assert allocator.allocate("Secrets") == "UC-SCR-001"

    def test_registry_reserves_tokens(self, repository):
        """A registered token is never derived for another category."""
        allocator = IdentifierAllocator(repository, category_tokens={"Security": "SEC"})
        assert allocator.token_for("Secrets") == "SECR"


# =============================================================================
# Scenario allocation
# =============================================================================

class TestScenarioAllocation:

    def test_first_scenario(self, repository):
        _store_use_case(repository, "UC-SEC-001", "Security")
        assert IdentifierAllocator(repository).allocate_scenario("UC-SEC-001") == "UC-SEC-001-S01"

    def test_next_scenario_and_reuse(self, repository):
        _store_use_case(repository, "UC-SEC-001", "Security",
                        scenario_ids=["UC-SEC-001-S01", "UC-SEC-001-S03"])
        for n in (1, 3):
            repository.create(Scenario(
                id=f"UC-SEC-001-S0{n}", use_case_id="UC-SEC-001", title=f"Scenario {n}",
            ))
        assert IdentifierAllocator(repository).allocate_scenario("UC-SEC-001") == "UC-SEC-001-S02"

    def test_missing_use_case(self, repository):
        with pytest.raises(NotFoundError):
            IdentifierAllocator(repository).allocate_scenario("UC-SEC-404")

    def test_scenario_capacity(self, repository):
        ids = [f"UC-SEC-001-S{n}" for n in range(1, 10)]
        _store_use_case(repository, "UC-SEC-001", "Security", scenario_ids=ids)
        allocator = IdentifierAllocator(repository, scenario_width=1)
        with pytest.raises(CapacityExceededError):
            allocator.allocate_scenario("UC-SEC-001")
