"""
Tests for the Use Case Service
==============================

Entity-level operations against both backends, verifying:
1. Identifier allocation through create/delete
2. Use case status follows its scenarios after every mutation
3. Reference validation (self, dangling, cycles) on every add
4. Deletion safety and cascading reference removal
5. Scenario containment and actor back-reference clearing
6. Dense step numbering through insert/remove/move
7. Failed operations leave no partial state behind
8. validate_project reports drift written around the service
9. Methodology extra fields and combined list queries
"""
import threading

import pytest

from ucm.errors import (
    CycleDetectedError,
    DanglingTargetError,
    InvariantViolationError,
    NotFoundError,
    ReferencedEntityInUseError,
    SelfReferenceError,
)
from ucm.models import (
    SCENARIO,
    USE_CASE,
    ActorType,
    Persona,
    Priority,
    ScenarioStep,
    Status,
    SystemActor,
    TargetType,
    UseCaseReference,
    UseCaseRelationship,
)


# =============================================================================
# Use cases
# =============================================================================

class TestUseCases:

    def test_create_allocates_ids(self, service):
        first = service.create_use_case("User Login", "Security")
        second = service.create_use_case("Password Reset", "Security")
        assert (first.id, second.id) == ("UC-SEC-001", "UC-SEC-002")
        assert first.status is Status.PLANNED
        assert first.metadata.version == 1

    def test_freed_id_reused(self, service):
        service.create_use_case("User Login", "Security")
        service.create_use_case("Password Reset", "Security")
        service.delete_use_case("UC-SEC-001")
        assert service.create_use_case("Logout", "Security").id == "UC-SEC-001"

    def test_blank_title_rejected(self, service):
        with pytest.raises(InvariantViolationError):
            service.create_use_case("   ", "Security")
        assert service.list_use_cases() == []

    def test_get_missing(self, service):
        with pytest.raises(NotFoundError) as exc_info:
            service.get_use_case("UC-SEC-404")
        assert exc_info.value.kind == USE_CASE

    def test_update_fields(self, service):
        uc = service.create_use_case("User Login", "Security")
        updated = service.update_use_case(uc.id, title="Sign In", priority="high", description="Desc")
        assert updated.title == "Sign In"
        assert updated.priority is Priority.HIGH
        assert updated.metadata.version == 2
        assert service.get_use_case(uc.id) == updated

    def test_extra_fields(self, service):
        uc = service.create_use_case(
            "User Login", "Security",
            extra={"business_value": "High", "acceptance_criteria": ["Password checked"]},
        )
        assert service.get_use_case(uc.id).extra == {
            "business_value": "High", "acceptance_criteria": ["Password checked"],
        }
        updated = service.update_use_case(uc.id, extra={"business_value": None, "owner": "security-team"})
        assert updated.extra == {"acceptance_criteria": ["Password checked"], "owner": "security-team"}
        assert service.get_use_case(uc.id) == updated

    def test_extra_cannot_shadow_fields(self, service):
        with pytest.raises(InvariantViolationError) as exc_info:
            service.create_use_case("User Login", "Security", extra={"status": "tested"})
        assert exc_info.value.details["fields"] == ["status"]
        assert service.list_use_cases() == []

        uc = service.create_use_case("User Login", "Security")
        with pytest.raises(InvariantViolationError):
            service.update_use_case(uc.id, extra={"title": "Other"})
        assert service.get_use_case(uc.id).metadata.version == 1

    def test_category_change_keeps_id(self, service):
        uc = service.create_use_case("User Login", "Security")
        service.add_scenario(uc.id, "Main")
        updated = service.update_use_case(uc.id, category="Identity")
        assert updated.id == "UC-SEC-001"
        assert [s.id for s in service.list_scenarios(uc.id)] == ["UC-SEC-001-S01"]
        # the category now owns the SEC token of its existing id
        assert service.create_use_case("Profile", "Identity").id == "UC-SEC-002"

    def test_queries(self, service):
        service.create_use_case("User Login", "Security", priority="high")
        service.create_use_case("Invoice Export", "Billing")
        service.create_use_case("Login Audit", "security")
        assert [uc.id for uc in service.list_by_category("SECURITY")] == ["UC-SEC-001", "UC-SEC-002"]
        assert [uc.id for uc in service.list_by_priority(Priority.HIGH)] == ["UC-SEC-001"]
        assert [uc.id for uc in service.list_by_status("planned")] == ["UC-BIL-001", "UC-SEC-001", "UC-SEC-002"]
        assert [uc.id for uc in service.search_by_title("login")] == ["UC-SEC-001", "UC-SEC-002"]
        assert service.list_categories() == ["Billing", "Security"]

    def test_query_combines_filters(self, service):
        service.create_use_case("User Login", "Security", priority="high")
        service.create_use_case("Invoice Export", "Billing", priority="high")
        service.create_use_case("Login Audit", "security")
        assert [uc.id for uc in service.query_use_cases()] == ["UC-BIL-001", "UC-SEC-001", "UC-SEC-002"]
        assert [uc.id for uc in service.query_use_cases(priority="HIGH")] == ["UC-BIL-001", "UC-SEC-001"]
        assert [uc.id for uc in service.query_use_cases(category="security", title="login")] == [
            "UC-SEC-001", "UC-SEC-002",
        ]
        assert [uc.id for uc in service.query_use_cases(priority="high", title="LOGIN")] == ["UC-SEC-001"]
        assert service.query_use_cases(status="tested", category="Security") == []
        with pytest.raises(ValueError):
            service.query_use_cases(status="finished")

    def test_linked_precondition_on_create(self, service):
        account = service.create_use_case("Create Account", "Accounts")
        uc = service.create_use_case(
            "User Login", "Security",
            preconditions=[{"text": "Account exists", "target_id": account.id}],
        )
        referrers = service.get_referrers(account.id)
        assert [(e.source_id, e.origin) for e in referrers] == [(uc.id, "precondition")]

    def test_linked_precondition_must_exist(self, service):
        with pytest.raises(DanglingTargetError):
            service.create_use_case(
                "User Login", "Security",
                preconditions=[{"text": "Account exists", "target_id": "UC-ACC-404"}],
            )
        assert service.list_use_cases() == []


# =============================================================================
# Status aggregation through the service
# =============================================================================

class TestDerivedStatus:

    def test_empty_use_case_is_planned(self, service):
        assert service.create_use_case("User Login", "Security").status is Status.PLANNED

    def test_status_follows_scenarios(self, service):
        uc = service.create_use_case("User Login", "Security")
        s1 = service.add_scenario(uc.id, "Happy path", status="implemented")
        service.add_scenario(uc.id, "Wrong password", scenario_type="exception", status="tested")
        s3 = service.add_scenario(uc.id, "Locked account", scenario_type="alternative", status="in_progress")
        assert service.get_use_case(uc.id).status is Status.IN_PROGRESS

        service.update_scenario_status(s3.id, Status.TESTED)
        assert service.get_use_case(uc.id).status is Status.IMPLEMENTED

        service.delete_scenario(s1.id)
        assert service.get_use_case(uc.id).status is Status.TESTED

    def test_deprecated_scenarios(self, service):
        uc = service.create_use_case("User Login", "Security")
        s1 = service.add_scenario(uc.id, "Old flow", status="deprecated")
        service.add_scenario(uc.id, "New flow", status="deployed")
        assert service.get_use_case(uc.id).status is Status.DEPLOYED
        service.delete_scenario(f"{uc.id}-S02")
        assert service.get_use_case(uc.id).status is Status.DEPRECATED
        service.delete_scenario(s1.id)
        assert service.get_use_case(uc.id).status is Status.PLANNED

    def test_recompute_is_noop_when_current(self, service):
        uc = service.create_use_case("User Login", "Security")
        service.add_scenario(uc.id, "Main", status="tested")
        before = service.get_use_case(uc.id)
        after = service.recompute_status(uc.id)
        assert after.metadata.version == before.metadata.version
        assert after.status is Status.TESTED

    def test_recompute_repairs_drift(self, service, repository):
        uc = service.create_use_case("User Login", "Security")
        service.add_scenario(uc.id, "Main", status="tested")
        repository.update(USE_CASE, uc.id, lambda u: setattr(u, "status", Status.PLANNED))
        assert service.recompute_status(uc.id).status is Status.TESTED

    def test_status_summary(self, service):
        uc = service.create_use_case("User Login", "Security")
        service.add_scenario(uc.id, "A", status="tested")
        service.add_scenario(uc.id, "B", status="planned")
        summary = service.get_status_summary(uc.id)
        assert summary.total == 2
        assert summary.aggregate is Status.PLANNED
        assert summary.completion_ratio == pytest.approx(0.5)


# =============================================================================
# References
# =============================================================================

class TestReferences:

    @pytest.fixture
    def three(self, service):
        return [service.create_use_case(f"Use case {n}", "Graph").id for n in (1, 2, 3)]

    def test_add_and_list(self, service, three):
        a, b, _ = three
        updated = service.add_reference(a, b, "dependency", "needs B")
        assert updated.references == [UseCaseReference(b, UseCaseRelationship.DEPENDENCY, "needs B")]
        assert [e.target_id for e in service.get_references(a)] == [b]
        assert [e.source_id for e in service.get_referrers(b)] == [a]

    def test_identical_edge_is_noop(self, service, three):
        a, b, _ = three
        first = service.add_reference(a, b, "dependency")
        second = service.add_reference(a, b, "dependency")
        assert len(second.references) == 1
        assert second.metadata.version == first.metadata.version

    def test_self_reference(self, service, three):
        with pytest.raises(SelfReferenceError):
            service.add_reference(three[0], three[0], "inclusion")

    def test_dangling(self, service, three):
        with pytest.raises(DanglingTargetError):
            service.add_reference(three[0], "UC-GRA-404", "inclusion")

    def test_cycle_rejected_and_state_unchanged(self, service, three):
        a, b, c = three
        service.add_reference(a, b, "dependency")
        service.add_reference(c, a, "dependency")
        before = service.get_use_case(b)
        with pytest.raises(CycleDetectedError):
            service.add_reference(b, c, "dependency")
        assert service.get_use_case(b) == before

    def test_inclusion_cycle_allowed(self, service, three):
        a, b, _ = three
        service.add_reference(a, b, "inclusion")
        service.add_reference(b, a, "inclusion")
        assert service.validate_project().is_valid

    def test_remove_reference(self, service, three):
        a, b, _ = three
        service.add_reference(a, b, "dependency")
        service.add_reference(a, b, "inclusion")
        updated = service.remove_reference(a, b, "inclusion")
        assert [r.relationship for r in updated.references] == [UseCaseRelationship.DEPENDENCY]
        with pytest.raises(NotFoundError):
            service.remove_reference(a, b, "inclusion")

    def test_scenario_reference_target_type_inferred(self, service, three):
        a, b, _ = three
        s1 = service.add_scenario(a, "Main")
        s2 = service.add_scenario(b, "Main")
        updated = service.add_scenario_reference(s2.id, s1.id, "includes")
        assert updated.references[0].target_type is TargetType.SCENARIO
        updated = service.add_scenario_reference(s2.id, a, "depends_on")
        assert updated.references[1].target_type is TargetType.USE_CASE

    def test_scenario_depends_on_cycle(self, service, three):
        a, _, _ = three
        s1 = service.add_scenario(a, "One")
        s2 = service.add_scenario(a, "Two")
        service.add_scenario_reference(s1.id, s2.id, "depends_on")
        with pytest.raises(CycleDetectedError):
            service.add_scenario_reference(s2.id, s1.id, "depends_on")

    def test_remove_scenario_reference(self, service, three):
        a, b, _ = three
        s1 = service.add_scenario(a, "Main")
        service.add_scenario_reference(s1.id, b, "extends")
        assert service.remove_scenario_reference(s1.id, b).references == []

    def test_references_of_missing_entity(self, service):
        with pytest.raises(NotFoundError):
            service.get_references("UC-NONE-001")


class TestConditions:

    def test_add_remove_conditions(self, service):
        uc = service.create_use_case("User Login", "Security")
        service.add_precondition(uc.id, "Account exists")
        service.add_precondition(uc.id, "Browser open")
        service.add_postcondition(uc.id, "Session open")
        updated = service.remove_precondition(uc.id, 1)
        assert [c.text for c in updated.preconditions] == ["Browser open"]
        updated = service.remove_postcondition(uc.id, 1)
        assert updated.postconditions == []

    def test_remove_out_of_range(self, service):
        uc = service.create_use_case("User Login", "Security")
        with pytest.raises(NotFoundError):
            service.remove_precondition(uc.id, 1)

    def test_linked_condition_is_validated(self, service):
        uc = service.create_use_case("User Login", "Security")
        with pytest.raises(SelfReferenceError):
            service.add_precondition(uc.id, "Itself", target_id=uc.id)
        with pytest.raises(DanglingTargetError):
            service.add_postcondition(uc.id, "Missing", target_id="UC-SEC-404")

    def test_condition_link_never_closes_cycle(self, service):
        """Condition links are not traversed, so call order cannot matter."""
        a = service.create_use_case("A", "Graph").id
        b = service.create_use_case("B", "Graph").id
        service.add_reference(b, a, "dependency")
        service.add_precondition(a, "B is done", target_id=b, relationship="dependency")
        assert service.validate_project().cycles == []

    def test_condition_link_before_reference(self, service):
        a = service.create_use_case("A", "Graph").id
        b = service.create_use_case("B", "Graph").id
        service.add_precondition(a, "B is done", target_id=b, relationship="dependency")
        service.add_reference(b, a, "dependency")
        assert service.validate_project().cycles == []


# =============================================================================
# Deletion safety
# =============================================================================

class TestDeletion:

    def test_referenced_use_case_blocked(self, service):
        a = service.create_use_case("A", "Graph")
        b = service.create_use_case("B", "Graph")
        service.add_reference(b.id, a.id, "dependency")
        with pytest.raises(ReferencedEntityInUseError) as exc_info:
            service.delete_use_case(a.id)
        assert exc_info.value.referrers == [b.id]
        assert service.get_use_case(a.id) is not None

    def test_cascade_removes_references(self, service):
        a = service.create_use_case("A", "Graph")
        b = service.create_use_case("B", "Graph")
        service.add_reference(b.id, a.id, "dependency")
        service.delete_use_case(a.id, cascade_references=True)
        assert service.get_use_case(b.id).references == []
        assert service.get_references(b.id) == []
        assert service.validate_project().is_valid

    def test_cascade_clears_condition_link_keeps_text(self, service):
        a = service.create_use_case("A", "Graph")
        b = service.create_use_case("B", "Graph")
        service.add_precondition(b.id, "A has run", target_id=a.id)
        with pytest.raises(ReferencedEntityInUseError):
            service.delete_use_case(a.id)
        service.delete_use_case(a.id, cascade_references=True)
        condition = service.get_use_case(b.id).preconditions[0]
        assert condition.text == "A has run"
        assert condition.target_id is None

    def test_reference_to_owned_scenario_blocks_use_case_delete(self, service):
        a = service.create_use_case("A", "Graph")
        b = service.create_use_case("B", "Graph")
        sa = service.add_scenario(a.id, "Main")
        sb = service.add_scenario(b.id, "Main")
        service.add_scenario_reference(sb.id, sa.id, "includes")
        with pytest.raises(ReferencedEntityInUseError):
            service.delete_use_case(a.id)
        with pytest.raises(ReferencedEntityInUseError):
            service.delete_scenario(sa.id)
        service.delete_scenario(sa.id, cascade_references=True)
        assert service.get_scenario(sb.id).references == []

    def test_delete_removes_owned_scenarios(self, service, repository):
        uc = service.create_use_case("A", "Graph")
        service.add_scenario(uc.id, "One")
        service.add_scenario(uc.id, "Two")
        service.delete_use_case(uc.id)
        assert repository.list(SCENARIO) == []
        with pytest.raises(NotFoundError):
            service.get_scenario(f"{uc.id}-S01")

    def test_self_owned_references_do_not_block(self, service):
        uc = service.create_use_case("A", "Graph")
        s1 = service.add_scenario(uc.id, "One")
        s2 = service.add_scenario(uc.id, "Two")
        service.add_scenario_reference(s2.id, s1.id, "extends")
        service.delete_use_case(uc.id)
        assert service.list_use_cases() == []


# =============================================================================
# Scenarios and steps
# =============================================================================

class TestScenarios:

    def test_add_scenario_registers_in_use_case(self, service):
        uc = service.create_use_case("User Login", "Security")
        sc = service.add_scenario(uc.id, "Main", steps=["Open page", ("Submit", None)])
        assert sc.id == "UC-SEC-001-S01"
        assert [s.order for s in sc.steps] == [1, 2]
        assert service.get_use_case(uc.id).scenario_ids == [sc.id]

    def test_scenario_order_preserved(self, service):
        uc = service.create_use_case("User Login", "Security")
        ids = [service.add_scenario(uc.id, t).id for t in ("One", "Two", "Three")]
        assert [s.id for s in service.list_scenarios(uc.id)] == ids
        assert service.find_scenario_by_title(uc.id, "two").id == ids[1]
        assert service.find_scenario_by_title(uc.id, "four") is None

    def test_missing_use_case(self, service):
        with pytest.raises(NotFoundError):
            service.add_scenario("UC-SEC-404", "Main")

    def test_missing_actor_leaves_no_trace(self, service, repository):
        uc = service.create_use_case("User Login", "Security")
        with pytest.raises(NotFoundError):
            service.add_scenario(uc.id, "Main", actor_id="ghost")
        with pytest.raises(NotFoundError):
            service.add_scenario(uc.id, "Main", steps=[{"description": "Step", "actor_id": "ghost"}])
        assert repository.list(SCENARIO) == []
        stored = service.get_use_case(uc.id)
        assert stored.scenario_ids == []
        assert stored.metadata.version == 1

    def test_update_scenario(self, service):
        service.create_persona("student", "Student")
        uc = service.create_use_case("User Login", "Security")
        sc = service.add_scenario(uc.id, "Main")
        updated = service.update_scenario(sc.id, title="Primary", scenario_type="alt", actor_id="student")
        assert updated.title == "Primary"
        assert updated.actor_id == "student"
        cleared = service.update_scenario(sc.id, actor_id=None)
        assert cleared.actor_id is None
        assert cleared.title == "Primary"

    def test_update_scenario_unknown_actor(self, service):
        uc = service.create_use_case("User Login", "Security")
        sc = service.add_scenario(uc.id, "Main")
        with pytest.raises(NotFoundError):
            service.update_scenario(sc.id, actor_id="ghost")

    def test_step_operations_keep_dense_order(self, service):
        uc = service.create_use_case("User Login", "Security")
        sc = service.add_scenario(uc.id, "Main", steps=["one", "two", "three"])

        sc = service.add_step(sc.id, "zero", position=1)
        assert [s.description for s in sc.steps] == ["zero", "one", "two", "three"]
        sc = service.add_step(sc.id, "four")
        sc = service.remove_step(sc.id, 3)
        assert [s.description for s in sc.steps] == ["zero", "one", "three", "four"]
        sc = service.move_step(sc.id, 4, 1)
        assert [s.description for s in sc.steps] == ["four", "zero", "one", "three"]
        assert [s.order for s in sc.steps] == [1, 2, 3, 4]
        assert service.get_scenario(sc.id) == sc

    def test_step_bounds(self, service):
        uc = service.create_use_case("User Login", "Security")
        sc = service.add_scenario(uc.id, "Main", steps=["one"])
        with pytest.raises(InvariantViolationError):
            service.add_step(sc.id, "far", position=5)
        with pytest.raises(NotFoundError):
            service.remove_step(sc.id, 2)
        with pytest.raises(NotFoundError):
            service.move_step(sc.id, 3, 1)
        with pytest.raises(InvariantViolationError):
            service.move_step(sc.id, 1, 2)

    def test_steps_from_scenario_step_objects(self, service):
        uc = service.create_use_case("User Login", "Security")
        sc = service.add_scenario(uc.id, "Main", steps=[ScenarioStep(7, "seven"), ScenarioStep(3, "three")])
        assert [(s.order, s.description) for s in sc.steps] == [(1, "seven"), (2, "three")]


# =============================================================================
# Actors
# =============================================================================

class TestActors:

    def test_create_and_list(self, service):
        service.create_persona("student", "Student", role="Learner")
        service.create_system_actor("db", "Database", actor_type="database")
        assert [a.id for a in service.list_actors()] == ["db", "student"]
        assert [a.id for a in service.list_actors(ActorType.PERSONA)] == ["student"]
        assert isinstance(service.get_actor("db"), SystemActor)

    def test_invalid_actor_id(self, service):
        with pytest.raises(InvariantViolationError):
            service.create_persona("Primary Teacher", "Teacher")

    def test_system_actor_cannot_be_persona_type(self, service):
        with pytest.raises(InvariantViolationError):
            service.create_system_actor("x", "X", actor_type="persona")

    def test_update_actor(self, service):
        service.create_persona("student", "Student")
        updated = service.update_actor("student", role="Learner", emoji="🎓")
        assert isinstance(updated, Persona)
        assert updated.role == "Learner"
        assert updated.metadata.version == 2

    def test_update_actor_unknown_field(self, service):
        service.create_system_actor("api", "API")
        with pytest.raises(InvariantViolationError):
            service.update_actor("api", role="Learner")
        with pytest.raises(InvariantViolationError):
            service.update_actor("api", actor_type="persona")

    def test_delete_actor_clears_back_references(self, service):
        service.create_persona("student", "Student")
        uc = service.create_use_case("User Login", "Security")
        sc = service.add_scenario(
            uc.id, "Main", actor_id="student",
            steps=[("Open page", "student"), ("Check credentials", None)],
        )
        assert [u.id for u in service.find_use_cases_referencing_actor("student")] == [uc.id]
        service.delete_actor("student")
        stored = service.get_scenario(sc.id)
        assert stored.actor_id is None
        assert all(step.actor_id is None for step in stored.steps)
        assert service.find_use_cases_referencing_actor("student") == []
        with pytest.raises(NotFoundError):
            service.get_actor("student")

    def test_init_standard_actors_idempotent(self, service):
        created = service.init_standard_actors()
        assert len(created) == 9
        assert service.init_standard_actors() == []
        assert len(service.list_actors()) == 9


# =============================================================================
# Project validation and concurrency
# =============================================================================

class TestValidateProject:

    def test_clean_project(self, service):
        uc = service.create_use_case("User Login", "Security")
        service.add_scenario(uc.id, "Main", status="tested")
        report = service.validate_project()
        assert report.is_valid
        assert report.to_dict()["is_valid"] is True

    def test_reports_drift_written_around_the_service(self, service, repository):
        a = service.create_use_case("A", "Graph")
        b = service.create_use_case("B", "Graph")
        sc = service.add_scenario(a.id, "Main", status="tested", steps=["one", "two"])

        def corrupt_use_case(uc):
            uc.references.append(UseCaseReference("UC-GRA-404", UseCaseRelationship.INCLUSION))
            uc.references.append(UseCaseReference(b.id, UseCaseRelationship.DEPENDENCY))
            uc.status = Status.PLANNED

        def corrupt_b(uc):
            uc.references.append(UseCaseReference(a.id, UseCaseRelationship.DEPENDENCY))

        def corrupt_scenario(s):
            s.steps[1].order = 5

        repository.update(USE_CASE, a.id, corrupt_use_case)
        repository.update(USE_CASE, b.id, corrupt_b)
        repository.update(SCENARIO, sc.id, corrupt_scenario)

        report = service.validate_project()
        assert not report.is_valid
        assert [e.target_id for e in report.dangling_references] == ["UC-GRA-404"]
        assert len(report.cycles) == 1
        assert report.status_drift == [{"id": a.id, "stored": "planned", "expected": "tested"}]
        assert report.step_order_gaps == [sc.id]

    def test_reports_ownership_mismatch(self, service, repository):
        uc = service.create_use_case("A", "Graph")
        service.add_scenario(uc.id, "Main")
        repository.update(USE_CASE, uc.id, lambda u: setattr(u, "scenario_ids", []))
        assert service.validate_project().ownership_mismatches == [uc.id]


class TestConcurrency:

    def test_parallel_creates_get_distinct_ids(self, service):
        results = []
        errors = []

        def worker(n):
            try:
                results.append(service.create_use_case(f"Use case {n}", "Security").id)
            except Exception as exc:  # collected for the assertion below
                errors.append(exc)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert sorted(results) == [f"UC-SEC-00{n}" for n in range(1, 9)]

    def test_parallel_step_removal_is_serialized(self, service):
        uc = service.create_use_case("User Login", "Security")
        sc = service.add_scenario(uc.id, "Main", steps=["one", "two"])
        barrier = threading.Barrier(2)
        errors = []

        def worker():
            barrier.wait()
            try:
                service.remove_step(sc.id, 2)
            except Exception as exc:  # collected for the assertion below
                errors.append(exc)

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert [type(e) for e in errors] == [NotFoundError]
        assert errors[0].kind == "step"
        assert [s.description for s in service.get_scenario(sc.id).steps] == ["one"]

    def test_parallel_step_moves_stay_in_bounds(self, service):
        uc = service.create_use_case("User Login", "Security")
        sc = service.add_scenario(uc.id, "Main", steps=["one", "two", "three"])
        barrier = threading.Barrier(3)
        errors = []

        def remove():
            barrier.wait()
            try:
                service.remove_step(sc.id, 3)
            except Exception as exc:  # collected for the assertion below
                errors.append(exc)

        def move():
            barrier.wait()
            try:
                service.move_step(sc.id, 1, 3)
            except Exception as exc:  # collected for the assertion below
                errors.append(exc)

        threads = [threading.Thread(target=f) for f in (remove, move, move)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert all(isinstance(e, (NotFoundError, InvariantViolationError)) for e in errors)
        steps = service.get_scenario(sc.id).steps
        assert [s.order for s in steps] == list(range(1, len(steps) + 1))
