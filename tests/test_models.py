"""
Tests for the Domain Models
===========================

Verifies:
1. Enum parsing of user and file input (status, priority, scenario type)
2. Status ordering and the terminal deprecated value
3. Entity dict shapes survive a round trip unchanged
4. Actor id rules and actor variant dispatch
5. Metadata version bumping
6. Unknown use case keys are kept as extra fields
"""
from datetime import timezone

import pytest

from ucm.models import (
    ACTOR,
    SCENARIO,
    USE_CASE,
    Actor,
    ActorType,
    Condition,
    Metadata,
    Persona,
    Priority,
    Scenario,
    ScenarioReference,
    ScenarioRelationship,
    ScenarioStep,
    ScenarioType,
    Status,
    SystemActor,
    TargetType,
    UseCase,
    UseCaseReference,
    UseCaseRelationship,
    entity_from_dict,
    standard_system_actors,
)


# =============================================================================
# Enumerations
# =============================================================================

class TestStatus:
    """Status parsing and ordering."""

    @pytest.mark.parametrize("raw", ["in_progress", "In Progress", "in-progress", "IN_PROGRESS", "inprogress"])
    def test_parse_spellings(self, raw):
        """Every common spelling of in_progress parses to the same member."""
        assert Status.parse(raw) is Status.IN_PROGRESS

    def test_parse_member_passthrough(self):
        assert Status.parse(Status.TESTED) is Status.TESTED

    def test_parse_invalid_lists_options(self):
        with pytest.raises(ValueError) as exc_info:
            Status.parse("finished")
        assert "planned" in str(exc_info.value)

    def test_rank_order(self):
        """planned < in_progress < implemented < tested < deployed."""
        ordered = [Status.PLANNED, Status.IN_PROGRESS, Status.IMPLEMENTED, Status.TESTED, Status.DEPLOYED]
        assert [s.rank for s in ordered] == [0, 1, 2, 3, 4]

    def test_deprecated_is_terminal_and_unranked(self):
        assert Status.DEPRECATED.is_terminal
        assert Status.DEPRECATED.rank is None
        assert not Status.DEPLOYED.is_terminal

    def test_display(self):
        assert Status.IN_PROGRESS.display_name == "IN_PROGRESS"
        assert Status.TESTED.emoji


class TestScenarioTypeAndPriority:

    @pytest.mark.parametrize("raw,expected", [
        ("main", ScenarioType.MAIN),
        ("happy_path", ScenarioType.MAIN),
        ("Alternative Flow", ScenarioType.ALTERNATIVE),
        ("exception_flow", ScenarioType.EXCEPTION),
        ("error", ScenarioType.EXCEPTION),
    ])
    def test_scenario_type_aliases(self, raw, expected):
        assert ScenarioType.parse(raw) is expected

    def test_scenario_type_invalid(self):
        with pytest.raises(ValueError):
            ScenarioType.parse("sideways")

    def test_priority_parse(self):
        assert Priority.parse("HIGH") is Priority.HIGH
        with pytest.raises(ValueError):
            Priority.parse("urgent")


# =============================================================================
# Value objects
# =============================================================================

class TestMetadata:

    def test_new_is_version_one_and_utc(self):
        meta = Metadata.new()
        assert meta.version == 1
        assert meta.created_at == meta.updated_at
        assert meta.created_at.tzinfo == timezone.utc

    def test_touch_bumps_version(self):
        meta = Metadata.new()
        created = meta.created_at
        meta.touch()
        meta.touch()
        assert meta.version == 3
        assert meta.created_at == created
        assert meta.updated_at >= created

    def test_from_dict_naive_timestamp_becomes_utc(self):
        meta = Metadata.from_dict({
            "created_at": "2024-01-02T03:04:05",
            "updated_at": "2024-01-02T03:04:05",
            "version": 4,
        })
        assert meta.created_at.tzinfo == timezone.utc
        assert meta.version == 4

    def test_from_dict_missing_creates_fresh(self):
        assert Metadata.from_dict(None).version == 1


class TestCondition:

    def test_plain_string(self):
        condition = Condition.from_dict("User is logged in")
        assert condition == Condition("User is logged in")
        assert condition.target_id is None

    def test_linked(self):
        data = {"text": "Account exists", "target_id": "UC-ACC-001", "relationship": "dependency"}
        assert Condition.from_dict(data).to_dict() == data


# =============================================================================
# Entities
# =============================================================================

def _use_case() -> UseCase:
    return UseCase(
        id="UC-SEC-001",
        title="User Login",
        category="Security",
        priority=Priority.HIGH,
        description="Sign in with credentials",
        preconditions=[Condition("Account exists", "UC-ACC-001", "dependency")],
        postconditions=[Condition("Session is open")],
        references=[UseCaseReference("UC-ACC-001", UseCaseRelationship.DEPENDENCY, "needs an account")],
        scenario_ids=["UC-SEC-001-S01"],
    )


def _scenario() -> Scenario:
    return Scenario(
        id="UC-SEC-001-S01",
        use_case_id="UC-SEC-001",
        title="Successful login",
        scenario_type=ScenarioType.MAIN,
        status=Status.TESTED,
        actor_id="student",
        steps=[ScenarioStep(1, "Open login page", "student"), ScenarioStep(2, "Submit form", "webserver")],
        preconditions=["Browser open"],
        references=[ScenarioReference(TargetType.USE_CASE, "UC-ACC-001", ScenarioRelationship.DEPENDS_ON)],
    )


class TestEntityRoundTrip:
    """to_dict() / from_dict() preserve every field, including metadata."""

    def test_use_case(self):
        use_case = _use_case()
        assert entity_from_dict(USE_CASE, use_case.to_dict()) == use_case

    def test_scenario(self):
        scenario = _scenario()
        assert entity_from_dict(SCENARIO, scenario.to_dict()) == scenario

    def test_persona(self):
        persona = Persona(id="student", name="Student", role="Learner", motivation="Pass the exam")
        restored = entity_from_dict(ACTOR, persona.to_dict())
        assert isinstance(restored, Persona)
        assert restored == persona

    def test_system_actor(self):
        actor = SystemActor(id="payment-gateway", name="Payments", actor_type=ActorType.EXTERNAL_SERVICE)
        restored = entity_from_dict(ACTOR, actor.to_dict())
        assert isinstance(restored, SystemActor)
        assert restored == actor

    def test_unicode_survives(self):
        use_case = UseCase(id="UC-GEN-001", title="Überweisung prüfen 💳", category="Général")
        assert UseCase.from_dict(use_case.to_dict()).title == "Überweisung prüfen 💳"

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            entity_from_dict("feature", {})


class TestUseCaseExtra:
    """Methodology fields the model does not know are kept in extra."""

    def test_unknown_keys_collected(self):
        data = _use_case().to_dict()
        data["business_value"] = "High"
        data["acceptance_criteria"] = ["Password checked"]
        restored = UseCase.from_dict(data)
        assert restored.extra == {"business_value": "High", "acceptance_criteria": ["Password checked"]}
        assert restored.title == data["title"]

    def test_extra_flattened_in_dict(self):
        use_case = UseCase(id="UC-SEC-001", title="Login", category="Security",
                           extra={"business_value": "High"})
        data = use_case.to_dict()
        assert data["business_value"] == "High"
        assert "extra" not in data
        assert entity_from_dict(USE_CASE, data) == use_case

    def test_to_dict_copies_extra(self):
        use_case = UseCase(id="UC-SEC-001", title="Login", category="Security",
                           extra={"tags": ["auth"]})
        use_case.to_dict()["tags"].append("changed")
        assert use_case.extra == {"tags": ["auth"]}

    @pytest.mark.parametrize("key", ["title", "status", "extra", "kind"])
    def test_reserved_key_rejected(self, key):
        with pytest.raises(ValueError, match=key):
            UseCase(id="UC-SEC-001", title="Login", category="Security", extra={key: "x"})


class TestScenarioHelpers:

    def test_dense_steps(self):
        scenario = _scenario()
        assert scenario.has_dense_steps()
        scenario.steps[0].order = 5
        assert not scenario.has_dense_steps()
        scenario.renumber_steps()
        assert [s.order for s in scenario.steps] == [1, 2]

    def test_referenced_actor_ids(self):
        assert _scenario().referenced_actor_ids() == {"student", "webserver"}

    def test_find_reference(self):
        scenario = _scenario()
        assert scenario.find_reference("UC-ACC-001") is not None
        assert scenario.find_reference("UC-ACC-001", ScenarioRelationship.EXTENDS) is None

    def test_linked_condition_targets(self):
        assert _use_case().linked_condition_targets() == ["UC-ACC-001"]


class TestActors:

    @pytest.mark.parametrize("actor_id", ["student", "primary-teacher", "api_v2", "a"])
    def test_valid_ids(self, actor_id):
        Actor.validate_id(actor_id)

    @pytest.mark.parametrize("actor_id", ["", "Student", "-student", "student_", "has space", "dot.id"])
    def test_invalid_ids(self, actor_id):
        with pytest.raises(ValueError):
            Actor.validate_id(actor_id)

    def test_default_emoji(self):
        assert Persona(id="p", name="P").emoji
        assert SystemActor(id="db", name="DB", actor_type=ActorType.DATABASE).emoji == "💾"

    def test_system_actor_cannot_be_persona(self):
        with pytest.raises(ValueError):
            SystemActor(id="x", name="X", actor_type=ActorType.PERSONA)

    def test_persona_actor_type(self):
        assert Persona(id="p", name="P").actor_type is ActorType.PERSONA

    def test_standard_actors_are_valid_and_unique(self):
        actors = standard_system_actors()
        ids = [a.id for a in actors]
        assert len(ids) == len(set(ids)) == 9
        for actor_id in ids:
            Actor.validate_id(actor_id)
