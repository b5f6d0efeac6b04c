import json

import pytest

from factories import linear_graph, scenario_graph
from wendi_api.errors import GraphValidationError
from wendi_api.schemas.bot_graph import (
    ButtonMessageNode,
    NodeType,
    OptionMessageNode,
    TextMessageNode,
    parse_bot_graph,
)


class TestParseBotGraph:
    def test_scenario_graph_parses(self):
        graph = parse_bot_graph(scenario_graph())
        assert len(graph) == 5
        assert graph.start_node_id == "start"
        assert isinstance(graph.get("B"), OptionMessageNode)
        assert [child.node_id for child in graph.get("B").options()] == ["B-yes", "B-no"]

    def test_accepts_json_string(self):
        graph = parse_bot_graph(json.dumps(scenario_graph()))
        assert "C" in graph
        assert graph.get("C").awaits_reply() is True

    def test_camel_case_round_trip(self):
        graph = parse_bot_graph(scenario_graph())
        dumped = json.loads(graph.to_json())
        assert dumped["C"]["needResponse"] is True
        assert dumped["B"]["children"][0]["nodeId"] == "B-yes"
        assert parse_bot_graph(dumped) == graph

    def test_legacy_message_reply_node_is_text(self):
        data = linear_graph(1)
        data["n1"]["type"] = "MESSAGE_REPLY_NODE"
        node = parse_bot_graph(data).get("n1")
        assert isinstance(node, TextMessageNode)
        assert node.text() == "message 1"

    def test_option_and_button_messages_always_wait(self):
        data = scenario_graph()
        data["B"]["needResponse"] = False
        data["E"] = {
            "nodeId": "E",
            "type": "BUTTON_MESSAGE_NODE",
            "message": "Pick one",
            "needResponse": False,
            "children": [{"nodeId": "E-1", "type": "BUTTON_NODE", "message": "Ok"}],
        }
        graph = parse_bot_graph(data)
        assert graph.get("B").awaits_reply() is True
        assert isinstance(graph.get("E"), ButtonMessageNode)
        assert graph.get("E").awaits_reply() is True

    def test_unknown_fields_are_ignored(self):
        data = linear_graph(1)
        data["n1"]["position"] = {"x": 10, "y": 20}
        assert parse_bot_graph(data).get("n1").node_id == "n1"

    def test_get_missing_node(self):
        graph = parse_bot_graph(scenario_graph())
        assert graph.get("missing") is None
        assert graph.get(None) is None

    def test_node_types(self):
        graph = parse_bot_graph(scenario_graph())
        assert graph.get("start").type == NodeType.START
        assert graph.get("B").type == NodeType.OPTION_MESSAGE


class TestGraphValidation:
    def test_missing_start_node(self):
        data = scenario_graph()
        del data["start"]
        with pytest.raises(GraphValidationError, match="exactly one START"):
            parse_bot_graph(data)

    def test_two_start_nodes(self):
        data = scenario_graph()
        data["start2"] = {"nodeId": "start2", "type": "START_NODE", "next": "A"}
        with pytest.raises(GraphValidationError):
            parse_bot_graph(data)

    def test_dangling_next(self):
        data = scenario_graph()
        data["A"]["next"] = "nowhere"
        with pytest.raises(GraphValidationError, match="unknown node 'nowhere'"):
            parse_bot_graph(data)

    def test_dangling_child_next(self):
        data = scenario_graph()
        data["B"]["children"][1]["next"] = "nowhere"
        with pytest.raises(GraphValidationError):
            parse_bot_graph(data)

    def test_key_must_match_node_id(self):
        data = scenario_graph()
        data["A"]["nodeId"] = "other"
        with pytest.raises(GraphValidationError, match="declares nodeId"):
            parse_bot_graph(data)

    def test_unknown_node_type(self):
        data = scenario_graph()
        data["A"]["type"] = "VIDEO_CALL_NODE"
        with pytest.raises(GraphValidationError):
            parse_bot_graph(data)

    def test_invalid_json(self):
        with pytest.raises(GraphValidationError):
            parse_bot_graph("{not json")
