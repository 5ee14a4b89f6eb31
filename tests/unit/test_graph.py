"""
Unit Tests for the Automation Graph

Tests for node/edge parsing, FlowGraph navigation and graph validation.
"""

import pytest

from autoflow_core.errors import GraphFormatError, GraphValidationError
from autoflow_core.graph import (
    AiStepConfig,
    Automation,
    BranchLabel,
    ConditionConfig,
    DelayConfig,
    DelayUnit,
    Edge,
    FlowGraph,
    GraphValidator,
    IssueCode,
    Node,
    NodeKind,
    SendMessageConfig,
    SetVariableConfig,
    new_trigger_node,
)


def _automation(nodes, edges, **kwargs) -> Automation:
    return Automation(id="a1", tenant_id="t1", name="Flow", nodes=nodes, edges=edges, **kwargs)


def _linear_flow() -> Automation:
    return _automation(
        [
            new_trigger_node(),
            Node("msg", NodeKind.SEND_MESSAGE, SendMessageConfig(message="Hi")),
            Node("end", NodeKind.END_FLOW),
        ],
        [Edge("trigger", "msg"), Edge("msg", "end")],
    )


# =============================================================================
# Node and Edge Tests
# =============================================================================


class TestNodeParsing:
    """Tests for builder node data."""

    def test_send_message_from_builder_data(self):
        """Test parsing a sendMessage node from the builder."""
        node = Node.from_dict({
            "id": "n1",
            "type": "sendMessage",
            "position": {"x": 10, "y": 20},
            "data": {"message": "Hello {name}", "label": "Greet", "onChange": None},
        })

        assert node.kind == NodeKind.SEND_MESSAGE
        assert node.config == SendMessageConfig(message="Hello {name}")
        assert node.label == "Greet"
        assert node.position == {"x": 10.0, "y": 20.0}

    def test_delay_accepts_numeric_strings(self):
        """Test delay values typed into the form as text."""
        node = Node.from_dict({
            "id": "d1",
            "type": "delay",
            "data": {"delayValue": "2", "delayUnit": "Hours"},
        })

        assert node.config.amount == 2.0
        assert node.config.unit == DelayUnit.HOURS

    def test_invalid_delay_unit_kept_as_none(self):
        """Test that an unknown unit does not fail parsing."""
        node = Node.from_dict({"id": "d1", "type": "delay", "data": {"delayUnit": "weeks"}})

        assert node.config.unit is None
        assert node.config.duration() is None

    def test_ai_step_default_output_variable(self):
        """Test the default variable for AI responses."""
        node = Node.from_dict({"id": "ai", "type": "aiStep", "data": {"prompt": "Summarize"}})

        assert node.config.output_variable == "lastAiResponse"

    def test_unknown_type_rejected(self):
        """Test that unknown node types raise GraphFormatError."""
        with pytest.raises(GraphFormatError):
            Node.from_dict({"id": "x", "type": "sendFax", "data": {}})

    def test_missing_id_rejected(self):
        with pytest.raises(GraphFormatError):
            Node.from_dict({"type": "endFlow"})

    def test_config_type_must_match_kind(self):
        """Test that a node cannot carry another kind's config."""
        with pytest.raises(TypeError):
            Node("n1", NodeKind.DELAY, SendMessageConfig(message="Hi"))

    def test_to_dict_uses_builder_keys(self):
        """Test that serialization uses the builder's key names."""
        node = Node("v1", NodeKind.SET_VARIABLE, SetVariableConfig(var_name="plan", var_value="gold"))

        data = node.to_dict()

        assert data["type"] == "setVariable"
        assert data["data"] == {"varName": "plan", "varValue": "gold"}


class TestEdgeParsing:
    """Tests for builder edge data."""

    def test_source_handle_becomes_label(self):
        edge = Edge.from_dict({"id": "e1", "source": "c", "target": "t", "sourceHandle": "true"})

        assert edge.label == BranchLabel.TRUE
        assert edge.id == "e1"

    def test_missing_handle_is_unlabeled(self):
        edge = Edge.from_dict({"source": "a", "target": "b"})

        assert edge.label is None
        assert edge.id.startswith("e_")

    def test_unknown_handle_rejected(self):
        with pytest.raises(GraphFormatError):
            Edge.from_dict({"source": "a", "target": "b", "sourceHandle": "maybe"})

    def test_missing_target_rejected(self):
        with pytest.raises(GraphFormatError):
            Edge.from_dict({"source": "a"})


# =============================================================================
# FlowGraph Tests
# =============================================================================


class TestFlowGraph:
    """Tests for graph navigation."""

    def test_entry_node_is_trigger(self):
        graph = FlowGraph.from_automation(_linear_flow())

        assert graph.entry_node().id == "trigger"

    def test_entry_node_requires_trigger(self):
        graph = FlowGraph([Node("end", NodeKind.END_FLOW)], [])

        with pytest.raises(GraphValidationError):
            graph.entry_node()

    def test_next_node_follows_unlabeled_edge(self):
        graph = FlowGraph.from_automation(_linear_flow())

        assert graph.next_node_id("trigger", None) == "msg"
        assert graph.next_node_id("end", None) is None

    def test_next_node_prefers_labeled_branch(self):
        graph = FlowGraph(
            [
                Node("c", NodeKind.CONDITION, ConditionConfig(condition="{x} == 1")),
                Node("yes", NodeKind.END_FLOW),
                Node("no", NodeKind.END_FLOW),
            ],
            [
                Edge("c", "yes", BranchLabel.TRUE),
                Edge("c", "no", BranchLabel.FALSE),
            ],
        )

        assert graph.next_node_id("c", BranchLabel.TRUE) == "yes"
        assert graph.next_node_id("c", BranchLabel.FALSE) == "no"

    def test_missing_branch_has_no_next_node(self):
        graph = FlowGraph(
            [
                Node("c", NodeKind.CONDITION, ConditionConfig(condition="{x} == 1")),
                Node("yes", NodeKind.END_FLOW),
            ],
            [Edge("c", "yes", BranchLabel.TRUE)],
        )

        assert graph.next_node_id("c", BranchLabel.FALSE) is None

    def test_remove_node_drops_incident_edges(self):
        graph = FlowGraph.from_automation(_linear_flow())

        graph.remove_node("msg")

        assert "msg" not in graph
        assert graph.outgoing("trigger") == []
        assert graph.incoming("end") == []

    def test_add_edge_requires_existing_nodes(self):
        graph = FlowGraph.from_automation(_linear_flow())

        with pytest.raises(KeyError):
            graph.add_edge(Edge("msg", "ghost"))

    def test_reachable_from_trigger(self):
        automation = _linear_flow()
        automation.nodes.append(Node("orphan", NodeKind.END_FLOW))

        reachable = FlowGraph.from_automation(automation).reachable_from("trigger")

        assert reachable == {"trigger", "msg", "end"}


# =============================================================================
# Validator Tests
# =============================================================================


class TestGraphValidator:
    """Tests for GraphValidator."""

    @pytest.fixture
    def validator(self):
        return GraphValidator(max_nodes=10)

    def test_linear_flow_is_valid(self, validator):
        result = validator.validate(_linear_flow())

        assert result.valid
        assert result.issues == []

    def test_missing_trigger(self, validator):
        result = validator.validate(_automation([Node("end", NodeKind.END_FLOW)], []))

        assert not result.valid
        assert IssueCode.MISSING_TRIGGER in result.codes()

    def test_duplicate_trigger(self, validator):
        automation = _linear_flow()
        automation.nodes.append(Node("trigger2", NodeKind.TRIGGER))

        result = validator.validate(automation)

        assert IssueCode.DUPLICATE_TRIGGER in result.codes()

    def test_duplicate_node_id(self, validator):
        automation = _linear_flow()
        automation.nodes.append(Node("msg", NodeKind.END_FLOW))

        assert IssueCode.DUPLICATE_NODE_ID in validator.validate(automation).codes()

    def test_dangling_edge(self, validator):
        automation = _linear_flow()
        automation.edges.append(Edge("msg", "ghost", id="e_bad"))

        result = validator.validate(automation)

        dangling = [i for i in result.errors if i.code == IssueCode.DANGLING_EDGE]
        assert dangling[0].edge_id == "e_bad"

    def test_trigger_with_incoming_edge(self, validator):
        automation = _linear_flow()
        automation.edges = [Edge("trigger", "msg"), Edge("msg", "trigger")]

        assert IssueCode.TRIGGER_HAS_INCOMING in validator.validate(automation).codes()

    def test_end_with_outgoing_edge(self, validator):
        automation = _linear_flow()
        automation.edges.append(Edge("end", "msg"))

        assert IssueCode.END_HAS_OUTGOING in validator.validate(automation).codes()

    def test_non_condition_fan_out(self, validator):
        automation = _linear_flow()
        automation.nodes.append(Node("end2", NodeKind.END_FLOW))
        automation.edges.append(Edge("msg", "end2"))

        assert IssueCode.BRANCHING_OUT_EDGES in validator.validate(automation).codes()

    def test_label_on_non_condition(self, validator):
        automation = _linear_flow()
        automation.edges[1] = Edge("msg", "end", BranchLabel.TRUE)

        assert IssueCode.LABEL_ON_NON_CONDITION in validator.validate(automation).codes()

    def test_condition_without_branches(self, validator):
        automation = _automation(
            [new_trigger_node(), Node("c", NodeKind.CONDITION, ConditionConfig(condition="{x}"))],
            [Edge("trigger", "c")],
        )

        assert IssueCode.MISSING_BRANCH in validator.validate(automation).codes()

    def test_condition_with_two_true_edges(self, validator):
        automation = _automation(
            [
                new_trigger_node(),
                Node("c", NodeKind.CONDITION, ConditionConfig(condition="{x}")),
                Node("a", NodeKind.END_FLOW),
                Node("b", NodeKind.END_FLOW),
            ],
            [
                Edge("trigger", "c"),
                Edge("c", "a", BranchLabel.TRUE),
                Edge("c", "b", BranchLabel.TRUE),
            ],
        )

        assert IssueCode.AMBIGUOUS_BRANCH in validator.validate(automation).codes()

    def test_condition_with_one_branch_is_valid(self, validator):
        automation = _automation(
            [
                new_trigger_node(),
                Node("c", NodeKind.CONDITION, ConditionConfig(condition="{x} == 1")),
                Node("a", NodeKind.END_FLOW),
            ],
            [Edge("trigger", "c"), Edge("c", "a", BranchLabel.TRUE)],
        )

        assert validator.validate(automation).valid

    def test_invalid_delay_config(self, validator):
        automation = _linear_flow()
        automation.nodes[1] = Node("msg", NodeKind.DELAY, DelayConfig(amount=0, unit=DelayUnit.MINUTES))

        result = validator.validate(automation)

        assert any(i.code == IssueCode.INVALID_CONFIG and i.node_id == "msg" for i in result.errors)

    @pytest.mark.parametrize(
        "value,unit",
        [("nan", "minutes"), ("inf", "minutes"), ("1e12", "days"), (1e300, "seconds"), (366, "days")],
    )
    def test_out_of_range_delay_is_invalid_config(self, validator, value, unit):
        """Test that unusable delay amounts become issues instead of errors."""
        automation = _linear_flow()
        automation.nodes[1] = Node.from_dict(
            {"id": "msg", "type": "delay", "data": {"delayValue": value, "delayUnit": unit}}
        )

        result = validator.validate(automation)

        assert not result.valid
        assert any(i.code == IssueCode.INVALID_CONFIG and i.node_id == "msg" for i in result.errors)

    def test_year_long_delay_is_valid(self, validator):
        automation = _linear_flow()
        automation.nodes[1] = Node("msg", NodeKind.DELAY, DelayConfig(amount=365, unit=DelayUnit.DAYS))

        assert validator.validate(automation).valid

    def test_ai_step_without_prompt(self, validator):
        automation = _linear_flow()
        automation.nodes[1] = Node("msg", NodeKind.AI_STEP, AiStepConfig(prompt=" "))

        assert IssueCode.INVALID_CONFIG in validator.validate(automation).codes()

    def test_unparseable_condition_is_warning(self, validator):
        """Test that a broken condition does not block saving."""
        automation = _automation(
            [
                new_trigger_node(),
                Node("c", NodeKind.CONDITION, ConditionConfig(condition="{x} >")),
                Node("a", NodeKind.END_FLOW),
            ],
            [Edge("trigger", "c"), Edge("c", "a", BranchLabel.TRUE)],
        )

        result = validator.validate(automation)

        assert result.valid
        assert [w.code for w in result.warnings] == [IssueCode.INVALID_CONDITION]

    def test_empty_message_is_warning(self, validator):
        automation = _linear_flow()
        automation.nodes[1] = Node("msg", NodeKind.SEND_MESSAGE, SendMessageConfig(message=""))

        result = validator.validate(automation)

        assert result.valid
        assert IssueCode.EMPTY_MESSAGE in result.codes()

    def test_unreachable_and_dead_end_warnings(self, validator):
        automation = _linear_flow()
        automation.nodes.append(Node("orphan", NodeKind.SEND_MESSAGE, SendMessageConfig(message="x")))

        result = validator.validate(automation)

        assert result.valid
        assert {IssueCode.UNREACHABLE_NODE, IssueCode.DEAD_END} <= result.codes()

    def test_missing_end_node_is_warning(self, validator):
        automation = _automation(
            [new_trigger_node(), Node("msg", NodeKind.SEND_MESSAGE, SendMessageConfig(message="Hi"))],
            [Edge("trigger", "msg")],
        )

        result = validator.validate(automation)

        assert result.valid
        assert IssueCode.NO_END_NODE in result.codes()

    def test_too_many_nodes(self):
        validator = GraphValidator(max_nodes=2)

        assert IssueCode.TOO_MANY_NODES in validator.validate(_linear_flow()).codes()

    def test_cycles_are_allowed(self, validator):
        automation = _automation(
            [
                new_trigger_node(),
                Node("a", NodeKind.SET_VARIABLE, SetVariableConfig(var_name="x", var_value="1")),
                Node("b", NodeKind.SEND_MESSAGE, SendMessageConfig(message="loop")),
            ],
            [Edge("trigger", "a"), Edge("a", "b"), Edge("b", "a")],
        )

        assert validator.validate(automation).valid

    def test_raise_for_errors(self, validator):
        result = validator.validate(_automation([], []))

        with pytest.raises(GraphValidationError) as exc_info:
            result.raise_for_errors()

        assert exc_info.value.issues
