"""
Tests for the graph model: node union, builder document format, graph helpers.
"""
import pytest
from pydantic import ValidationError

from models.flow_data import FlowGraph, ConditionConfig, DelayConfig
from models.execution_cursor import ExecutionCursor
from utils.template_utils import interpolate

from flow_fixtures import node, edge, chain, make_graph


class TestNodeUnion:
    def test_builder_document_is_normalized(self):
        graph = FlowGraph.model_validate({
            "id": "g1",
            "bot_id": "bot_1",
            "nodes": [
                {"id": "s", "type": "start", "position": {"x": 0, "y": 0}, "data": {}},
                {"id": "ask", "type": "userInput", "data": {"prompt": "Name?", "variableName": "name"}},
                {"id": "img", "type": "image", "data": {"imageUrl": "https://cdn.example.com/a.png"}},
            ],
            "edges": [
                {"id": "e1", "source": "s", "target": "ask"},
                {"id": "e2", "source": "ask", "target": "img", "sourceHandle": "out"},
            ],
        })
        assert list(graph.nodes) == ["s", "ask", "img"]
        assert graph.get_node("ask").kind == "userInput"
        assert graph.get_node("ask").config.variable_name == "name"
        assert graph.get_node("img").config.image_url == "https://cdn.example.com/a.png"
        assert graph.edges[1].source_id == "ask"
        assert graph.edges[1].source_handle == "out"

    def test_unknown_kind_is_rejected(self):
        with pytest.raises(ValidationError):
            make_graph("g1", [node("x", "carousel")], [])

    def test_config_that_does_not_fit_kind_is_rejected(self):
        with pytest.raises(ValidationError):
            make_graph("g1", [node("t", "text", caption="no message here")], [])

    def test_quick_reply_needs_buttons(self):
        with pytest.raises(ValidationError):
            make_graph("g1", [node("q", "quickReply", message="Pick", buttons=[])], [])

    def test_legacy_condition_becomes_single_predicate(self):
        config = ConditionConfig.model_validate({"variable": "@city", "operator": "equals", "value": "Pune"})
        assert len(config.predicates) == 1
        assert config.predicates[0].id == "true"
        assert config.predicates[0].variable == "@city"

    def test_numeric_predicate_value_is_coerced(self):
        config = ConditionConfig.model_validate({
            "predicates": [{"id": "p", "variable": "age", "operator": "greaterThan", "value": 18}]
        })
        assert config.predicates[0].value == "18"

    def test_delay_aliases(self):
        config = DelayConfig.model_validate({"delayDuration": 2, "delayUnit": "minutes", "delayInterrupt": True})
        assert config.duration == 2
        assert config.unit == "minutes"
        assert config.interruptible is True


class TestFlowGraph:
    def test_canonical_start_is_first_in_authoring_order(self):
        graph = make_graph(
            "g1",
            [node("s2", "start"), node("s1", "start"), node("end", "end")],
            chain("s2", "end"),
        )
        assert [n.id for n in graph.start_nodes()] == ["s2", "s1"]
        assert graph.canonical_start().id == "s2"

    def test_edge_helpers(self):
        graph = make_graph(
            "g1",
            [node("s", "start"), node("a", "text", message="A"), node("b", "text", message="B")],
            [edge("s", "a"), edge("s", "b"), edge("a", "b")],
        )
        assert [e.target_id for e in graph.outgoing_edges("s")] == ["a", "b"]
        assert [e.source_id for e in graph.incoming_edges("b")] == ["s", "a"]

    def test_graph_is_read_only(self):
        graph = make_graph("g1", [node("s", "start")], [])
        with pytest.raises(ValidationError):
            graph.name = "renamed"


class TestExecutionCursor:
    def test_cleared_keeps_bindings(self):
        cursor = ExecutionCursor(
            bot_id="bot_1",
            contact_id="c1",
            graph_id="g1",
            current_node_id="ask",
            awaiting_input=True,
            bindings={"name": "Bob"},
            version=3,
        )
        cleared = cursor.cleared()
        assert not cleared.is_active()
        assert not cleared.is_paused()
        assert cleared.bindings == {"name": "Bob"}
        assert cleared.version == 3


class TestInterpolate:
    def test_known_placeholders_are_replaced(self):
        assert interpolate("Hi {{ name }}, you are {{age}}", {"name": "Bob", "age": "30"}) == "Hi Bob, you are 30"

    def test_unknown_or_empty_placeholders_are_left_verbatim(self):
        assert interpolate("Hi {{name}} from {{city}}", {"city": ""}) == "Hi {{name}} from {{city}}"
