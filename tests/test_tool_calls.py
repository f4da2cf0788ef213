"""Tests for decoding tool regions."""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from collegebot.errors import InvalidParameters, MalformedToolCall, ToolCallError
from collegebot.tool_calls import decode_tool_call


class TestDecodeToolCall:

    def test_decodes_name_and_parameters(self):
        call = decode_tool_call('<name>lookup</name><parameters>{"q":"x"}</parameters>')
        assert call.name == "lookup"
        assert call.parameters == {"q": "x"}

    def test_whitespace_and_multiline_json(self):
        content = """
        <name> search_colleges </name>
        <parameters>
        {
            "state": "CA",
            "majors": ["biology", "chemistry"]
        }
        </parameters>
        """
        call = decode_tool_call(content)
        assert call.name == "search_colleges"
        assert call.parameters["majors"] == ["biology", "chemistry"]

    def test_unrecognized_name_is_not_an_error(self):
        assert decode_tool_call("<name>bogus</name><parameters>{}</parameters>").name == "bogus"

    @pytest.mark.parametrize("content", [
        '<parameters>{"q": 1}</parameters>',
        "<name>lookup</name>",
        '<name>  </name><parameters>{}</parameters>',
        "just prose",
    ])
    def test_missing_parts_are_malformed(self, content):
        with pytest.raises(MalformedToolCall) as exc:
            decode_tool_call(content)
        assert "missing name or parameters" in str(exc.value)

    @pytest.mark.parametrize("raw", ["{not json", "[1, 2]", '"text"', "42", ""])
    def test_non_object_parameters_are_invalid(self, raw):
        with pytest.raises(InvalidParameters):
            decode_tool_call(f"<name>lookup</name><parameters>{raw}</parameters>")

    def test_errors_share_recoverable_base(self):
        with pytest.raises(ToolCallError):
            decode_tool_call("<name>x</name><parameters>nope</parameters>")

    def test_pretty_parameters(self):
        call = decode_tool_call('<name>lookup</name><parameters>{"q":"x"}</parameters>')
        assert call.pretty_parameters() == '{\n  "q": "x"\n}'
