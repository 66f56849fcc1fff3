"""
Tests for ensemble.orchestration.transition_rules
===================================================

What's Being Tested:
    - Rule tables: structural matching, available transitions, phase hints
    - Reachability and orphan-rule detection
    - TransitionRuleRegistry: registration, lookup, verification

Every edge listed in a table must be accepted and every absent edge
rejected. The task and workflow tables are checked against hand-written
edge lists, and all four kinds are walked pair by pair through the
StatusValidator.
"""

from datetime import datetime, timezone

import pytest

from ensemble.core.enums import (
    AgentStatus,
    EntityKind,
    ExecutionPhase,
    MessageStatus,
    TaskStatus,
    ValidationErrorCode,
    WorkflowStatus,
)
from ensemble.core.exceptions import ConfigurationError
from ensemble.core.models import TransitionContext
from ensemble.orchestration.status_validator import StatusValidator
from ensemble.orchestration.transition_rules import (
    TaskTransitionRules,
    TransitionRule,
    TransitionRuleRegistry,
    WorkflowTransitionRules,
    default_registry,
)

TASK_EDGES = {
    TaskStatus.PENDING: {TaskStatus.TODO},
    TaskStatus.TODO: {TaskStatus.DOING, TaskStatus.BLOCKED},
    TaskStatus.DOING: {
        TaskStatus.DONE,
        TaskStatus.ERROR,
        TaskStatus.BLOCKED,
        TaskStatus.AWAITING_VALIDATION,
    },
    TaskStatus.AWAITING_VALIDATION: {TaskStatus.VALIDATED, TaskStatus.REVISE},
    TaskStatus.VALIDATED: {TaskStatus.DONE},
    TaskStatus.ERROR: {TaskStatus.REVISE, TaskStatus.BLOCKED},
    TaskStatus.REVISE: {TaskStatus.DOING},
    TaskStatus.BLOCKED: {TaskStatus.TODO, TaskStatus.ERROR},
    TaskStatus.DONE: {TaskStatus.REVISE, TaskStatus.TODO},
}

WORKFLOW_EDGES = {
    WorkflowStatus.INITIAL: {WorkflowStatus.RUNNING},
    WorkflowStatus.RUNNING: {
        WorkflowStatus.FINISHED,
        WorkflowStatus.ERRORED,
        WorkflowStatus.BLOCKED,
        WorkflowStatus.STOPPING,
        WorkflowStatus.PAUSED,
    },
    WorkflowStatus.PAUSED: {WorkflowStatus.RUNNING, WorkflowStatus.STOPPING, WorkflowStatus.ERRORED},
    WorkflowStatus.STOPPING: {WorkflowStatus.STOPPED},
    WorkflowStatus.BLOCKED: {WorkflowStatus.RUNNING, WorkflowStatus.ERRORED},
    WorkflowStatus.STOPPED: {WorkflowStatus.INITIAL},
    WorkflowStatus.FINISHED: {WorkflowStatus.RUNNING},
}


def _all_pairs(status_type):
    return [(a, b) for a in status_type for b in status_type]


# =============================================================================
# Test: Rule Tables
# =============================================================================
class TestTaskRuleTable:
    """Tests for the task lifecycle table."""

    @pytest.mark.parametrize(("current", "target"), _all_pairs(TaskStatus))
    def test_edge_membership_matches_table(self, current: TaskStatus, target: TaskStatus) -> None:
        """is_allowed() is true exactly for the declared edges."""
        table = TaskTransitionRules()
        expected = target in TASK_EDGES.get(current, set())
        assert table.is_allowed(current, target) is expected

    @pytest.mark.parametrize("current", list(TaskStatus))
    def test_available_transitions_round_trip(self, current: TaskStatus) -> None:
        """Every available target is allowed, and nothing else is."""
        table = TaskTransitionRules()
        available = set(table.available_transitions(current))
        assert available == TASK_EDGES.get(current, set())
        for target in available:
            assert table.is_allowed(current, target)

    def test_accepts_raw_strings(self) -> None:
        """Status strings and enum members are interchangeable."""
        table = TaskTransitionRules()
        assert table.is_allowed("TODO", "DOING")
        assert table.is_valid_status("AWAITING_VALIDATION")
        assert not table.is_valid_status("FLYING")

    def test_done_to_revise_carries_feedback_guard(self) -> None:
        rules = TaskTransitionRules().matching_rules(TaskStatus.DONE, TaskStatus.REVISE)
        assert len(rules) == 1
        assert rules[0].validation is not None
        assert rules[0].label == "feedback_required"

    def test_phase_hints(self) -> None:
        """Targets map to the phase a transition into them happens in."""
        table = TaskTransitionRules()
        assert table.phase_for(TaskStatus.TODO) == ExecutionPhase.PRE_EXECUTION
        assert table.phase_for(TaskStatus.DOING) == ExecutionPhase.EXECUTION
        assert table.phase_for(TaskStatus.DONE) == ExecutionPhase.POST_EXECUTION
        assert table.phase_for(TaskStatus.ERROR) == ExecutionPhase.ERROR

    def test_extra_rules_extend_the_table(self) -> None:
        table = TaskTransitionRules(
            extra_rules=[TransitionRule(from_status=TaskStatus.PENDING, to_status=[TaskStatus.DOING])]
        )
        assert table.is_allowed(TaskStatus.PENDING, TaskStatus.DOING)


class TestWorkflowRuleTable:
    """Tests for the workflow lifecycle table."""

    @pytest.mark.parametrize(("current", "target"), _all_pairs(WorkflowStatus))
    def test_edge_membership_matches_table(
        self, current: WorkflowStatus, target: WorkflowStatus
    ) -> None:
        table = WorkflowTransitionRules()
        expected = target in WORKFLOW_EDGES.get(current, set())
        assert table.is_allowed(current, target) is expected


class TestAgentRuleTable:
    """Spot checks on the agent reasoning loop."""

    def test_core_loop_edges(self, registry: TransitionRuleRegistry) -> None:
        table = registry.table_for(EntityKind.AGENT)
        assert table.is_allowed(AgentStatus.IDLE, AgentStatus.ITERATION_START)
        assert table.is_allowed(AgentStatus.ITERATION_START, AgentStatus.MAX_ITERATIONS_ERROR)
        assert table.is_allowed(AgentStatus.TOOL_DOES_NOT_EXIST, AgentStatus.ITERATION_END)
        assert table.is_allowed(AgentStatus.AGENTIC_LOOP_ERROR, AgentStatus.IDLE)
        assert not table.is_allowed(AgentStatus.IDLE, AgentStatus.FINAL_ANSWER)


# =============================================================================
# Test: Reachability
# =============================================================================
class TestReachability:
    """Tests for orphan-rule detection."""

    def test_built_in_tables_have_no_orphans(self, registry: TransitionRuleRegistry) -> None:
        registry.verify()

    def test_unreachable_rule_is_reported(self) -> None:
        """A rule whose source status can never be entered is an orphan."""
        table = WorkflowTransitionRules()
        assert WorkflowStatus.RUNNING.value in table.reachable_statuses()

        orphan = TransitionRule(
            from_status=TaskStatus.VALIDATED,
            to_status=[TaskStatus.TODO],
            name="unreachable",
        )

        class _Trimmed(TaskTransitionRules):
            def _build_rules(self):
                return [
                    rule
                    for rule in super()._build_rules()
                    if "VALIDATED" not in rule.to_status + rule.from_status
                ]

        trimmed = _Trimmed(extra_rules=[orphan])
        assert [rule.label for rule in trimmed.orphan_rules()] == ["unreachable"]

        registry = TransitionRuleRegistry([trimmed])
        with pytest.raises(ConfigurationError) as exc_info:
            registry.verify()
        assert exc_info.value.error_code == "ORPHAN_TRANSITION_RULES"
        assert exc_info.value.details["orphans"] == {"task": ["unreachable"]}


# =============================================================================
# Test: Registry
# =============================================================================
class TestRegistry:
    """Tests for TransitionRuleRegistry."""

    def test_default_registry_has_four_kinds(self) -> None:
        registry = default_registry(verify=True)
        assert set(registry.kinds) == set(EntityKind)

    def test_duplicate_registration_rejected(self) -> None:
        registry = TransitionRuleRegistry([TaskTransitionRules()])
        with pytest.raises(ConfigurationError) as exc_info:
            registry.register(TaskTransitionRules())
        assert exc_info.value.error_code == "RULES_ALREADY_REGISTERED"

    def test_replace_allows_reregistration(self) -> None:
        registry = TransitionRuleRegistry([TaskTransitionRules()])
        replacement = TaskTransitionRules()
        registry.register(replacement, replace=True)
        assert registry.get(EntityKind.TASK) is replacement

    def test_missing_kind(self) -> None:
        registry = TransitionRuleRegistry([TaskTransitionRules()])
        assert registry.get(EntityKind.MESSAGE) is None
        with pytest.raises(ConfigurationError) as exc_info:
            registry.table_for(EntityKind.MESSAGE)
        assert exc_info.value.error_code == "RULES_NOT_REGISTERED"

    def test_rules_for_lists_declaration_order(self) -> None:
        registry = TransitionRuleRegistry([TaskTransitionRules()])
        assert registry.rules_for(EntityKind.TASK)[0].label == "PENDING -> TODO"


# =============================================================================
# Test: Validator Agreement
# =============================================================================
KIND_STATUSES = [
    (EntityKind.AGENT, AgentStatus),
    (EntityKind.TASK, TaskStatus),
    (EntityKind.WORKFLOW, WorkflowStatus),
    (EntityKind.MESSAGE, MessageStatus),
]


def _kind_pairs():
    return [
        pytest.param(kind, current, target, id=f"{kind.value}:{current.value}->{target.value}")
        for kind, status_type in KIND_STATUSES
        for current, target in _all_pairs(status_type)
    ]


def _kind_statuses():
    return [
        pytest.param(kind, current, id=f"{kind.value}:{current.value}")
        for kind, status_type in KIND_STATUSES
        for current in status_type
    ]


def _make_context(kind: EntityKind, current, target, **metadata) -> TransitionContext:
    table = default_registry().table_for(kind)
    return TransitionContext(
        entity=kind,
        entity_id="e1",
        current_status=current.value,
        target_status=target.value,
        operation="walk_table",
        phase=table.phase_for(target),
        start_time=datetime.now(timezone.utc),
        metadata=metadata,
    )


class TestValidatorAgreesWithTables:
    """StatusValidator accepts exactly the edges each table declares."""

    @pytest.mark.parametrize(("kind", "current", "target"), _kind_pairs())
    async def test_every_pair(self, validator: StatusValidator, kind: EntityKind, current, target) -> None:
        """With guard inputs supplied, validity is edge membership."""
        table = validator.registry.table_for(kind)
        declared = target in table.available_transitions(current)

        result = await validator.validate_transition(
            _make_context(kind, current, target, feedback="needs another pass")
        )

        assert result.is_valid is declared
        if not declared:
            assert result.error_codes == [ValidationErrorCode.STATE_TRANSITION_INVALID]

    @pytest.mark.parametrize(("kind", "current"), _kind_statuses())
    async def test_available_targets_validate(
        self, validator: StatusValidator, kind: EntityKind, current
    ) -> None:
        """Every guard-free available target passes the full validator."""
        table = validator.registry.table_for(kind)
        for target in validator.get_available_transitions(current, kind):
            rules = table.matching_rules(current, target)
            if any(rule.validation is not None for rule in rules):
                continue
            result = await validator.validate_transition(_make_context(kind, current, target))
            assert result.is_valid, (current, target, result.error_dicts())

    async def test_guarded_done_to_revise(self, validator: StatusValidator) -> None:
        """The one guarded edge needs feedback in the metadata."""
        bare = await validator.validate_transition(
            _make_context(EntityKind.TASK, TaskStatus.DONE, TaskStatus.REVISE)
        )
        with_feedback = await validator.validate_transition(
            _make_context(EntityKind.TASK, TaskStatus.DONE, TaskStatus.REVISE, feedback="tighten the intro")
        )

        assert bare.error_codes == [ValidationErrorCode.VALIDATION_RULE_VIOLATION]
        assert with_feedback.is_valid

    def test_only_task_table_has_guards(self, registry: TransitionRuleRegistry) -> None:
        guarded = [
            (kind, rule.label)
            for kind, _ in KIND_STATUSES
            for rule in registry.rules_for(kind)
            if rule.validation is not None
        ]
        assert guarded == [(EntityKind.TASK, "feedback_required")]
