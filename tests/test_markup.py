"""Tests for the incremental reasoning and tool-call markup scanner."""

from __future__ import annotations

import random

import pytest

from poe_gateway.translation.markup import (
    MarkupScanner,
    ReasoningMarkers,
    ScanResult,
    parse_tool_call_block,
)


def scan_all(scanner: MarkupScanner, chunks: list[str]) -> ScanResult:
    """Feed chunks and flush, merging everything into one result."""
    merged = ScanResult()
    for chunk in chunks:
        for kind, value in scanner.feed(chunk).pieces:
            merged.add(kind, value)
    for kind, value in scanner.flush().pieces:
        merged.add(kind, value)
    return merged


def split_at(text: str, cuts: tuple[int, ...]) -> list[str]:
    bounds = [0, *sorted(cuts), len(text)]
    return [text[a:b] for a, b in zip(bounds, bounds[1:])]


class TestParseToolCallBlock:
    """Tests for tool-call block bodies."""

    def test_json_form(self):
        """JSON bodies yield name and arguments."""
        parsed = parse_tool_call_block('{"name": "get_weather", "arguments": {"city": "Paris"}}')
        assert parsed == {"name": "get_weather", "arguments": {"city": "Paris"}}

    def test_json_arguments_as_string(self):
        """Arguments given as a JSON string are decoded."""
        parsed = parse_tool_call_block('{"name": "f", "arguments": "{\\"x\\": 1}"}')
        assert parsed == {"name": "f", "arguments": {"x": 1}}

    def test_parameters_alias(self):
        """``parameters`` is accepted in place of ``arguments``."""
        parsed = parse_tool_call_block('{"name": "f", "parameters": {"x": 1}}')
        assert parsed == {"name": "f", "arguments": {"x": 1}}

    def test_arg_key_value_form(self):
        """The arg_key/arg_value form parses values as JSON when possible."""
        body = "search<arg_key>query</arg_key><arg_value>cats</arg_value><arg_key>limit</arg_key><arg_value>5</arg_value>"
        assert parse_tool_call_block(body) == {
            "name": "search",
            "arguments": {"query": "cats", "limit": 5},
        }

    @pytest.mark.parametrize(
        "body",
        [
            "",
            "{not json",
            '{"arguments": {}}',
            '{"name": "f", "arguments": [1, 2]}',
            "not a valid name!",
        ],
    )
    def test_invalid_bodies(self, body):
        """Unparseable bodies return None."""
        assert parse_tool_call_block(body) is None


class TestThinkTags:
    """Tests for <think> reasoning sections."""

    def test_reasoning_then_answer(self):
        """Think tags split reasoning from content with no markers leaking."""
        result = scan_all(MarkupScanner(), ["<think>step one</think>The answer."])
        assert result.reasoning == "step one"
        assert result.content == "The answer."

    def test_tags_split_across_chunks(self):
        """Tags cut at any position still parse."""
        text = "<think>hmm</think>ok"
        for cut in range(1, len(text)):
            result = scan_all(MarkupScanner(), [text[:cut], text[cut:]])
            assert result.reasoning == "hmm", cut
            assert result.content == "ok", cut

    def test_unterminated_think_flushes_as_reasoning(self):
        """Reasoning without a closing tag is still delivered."""
        result = scan_all(MarkupScanner(), ["<think>never closed"])
        assert result.reasoning == "never closed"
        assert result.content == ""

    def test_lone_angle_bracket_is_content(self):
        """A ``<`` that starts no known tag is plain content."""
        result = scan_all(MarkupScanner(), ["a < b and <b>bold</b>"])
        assert result.content == "a < b and <b>bold</b>"

    def test_partial_tag_is_held_back(self):
        """A possible tag prefix is not emitted until decided."""
        scanner = MarkupScanner()
        first = scanner.feed("hello <thi")
        assert first.content == "hello "
        second = scanner.feed("s is not a tag")
        assert second.content == "<this is not a tag"

    def test_custom_tag_name(self):
        """The reasoning tag name is configurable."""
        scanner = MarkupScanner(ReasoningMarkers(think_tag="reasoning"))
        result = scan_all(scanner, ["<reasoning>r</reasoning>c"])
        assert result.reasoning == "r"
        assert result.content == "c"


class TestQuotedThinking:
    """Tests for the quoted ``*Thinking...*`` convention."""

    def test_quoted_block_then_answer(self):
        """Quoted lines after the header are reasoning; the rest is content."""
        text = "*Thinking...*\n\n> First thought.\n> Second thought.\n\nFinal answer."
        result = scan_all(MarkupScanner(), [text])
        assert result.reasoning == "First thought.\nSecond thought."
        assert result.content == "Final answer."

    def test_plain_header_variant(self):
        """The unstyled ``Thinking...`` header is recognized too."""
        result = scan_all(MarkupScanner(), ["Thinking...\n> idea\nanswer"])
        assert result.reasoning == "idea"
        assert result.content == "answer"

    def test_split_into_single_characters(self):
        """The quoted convention survives one-character chunks."""
        text = "*Thinking...*\n> a\n> b\nanswer"
        result = scan_all(MarkupScanner(), list(text))
        assert result.reasoning == "a\nb"
        assert result.content == "answer"

    def test_header_after_leading_content(self):
        """A header on its own line after some text opens the quoted block."""
        text = "Hello\n*Thinking...*\n> reasoning here\nanswer"
        result = scan_all(MarkupScanner(), [text])
        assert result.reasoning == "reasoning here"
        assert result.content == "Hello\nanswer"

    @pytest.mark.parametrize("cuts", [(3,), (6, 9), (7, 20, 24)])
    def test_header_after_leading_content_split(self, cuts):
        """The mid-reply header is found across chunk boundaries."""
        text = "Hello\n*Thinking...*\n> reasoning here\nanswer"
        result = scan_all(MarkupScanner(), split_at(text, cuts))
        assert result.reasoning == "reasoning here"
        assert result.content == "Hello\nanswer"

    def test_only_first_header_counts(self):
        """A second header after the quoted block stays in the content."""
        text = "*Thinking...*\n> a\nanswer\nThinking...\n> b"
        result = scan_all(MarkupScanner(), [text])
        assert result.reasoning == "a"
        assert result.content == "answer\nThinking...\n> b"

    def test_header_inside_a_sentence_is_content(self):
        """A header sharing its line with other text is not a marker."""
        text = "Intro\nThinking... about it\n> quoted"
        result = scan_all(MarkupScanner(), [text])
        assert result.reasoning == ""
        assert result.content == text

    @pytest.mark.parametrize("blank", [">", "> "])
    def test_blank_quoted_line_separates_paragraphs(self, blank):
        """A bare quote line between paragraphs becomes one blank line."""
        text = f"*Thinking...*\n> para one\n{blank}\n> para two\n\nanswer"
        result = scan_all(MarkupScanner(), [text])
        assert result.reasoning == "para one\n\npara two"
        assert result.content == "answer"

    def test_marker_absent(self):
        """Text without any markers is returned unchanged."""
        result = scan_all(MarkupScanner(), ["Think", "ing about ", "> quotes"])
        assert result.reasoning == ""
        assert result.content == "Thinking about > quotes"

    def test_disabled_thinking(self):
        """With thinking parsing off, markers stay in the content."""
        scanner = MarkupScanner(parse_thinking=False)
        result = scan_all(scanner, ["<think>x</think>y"])
        assert result.content == "<think>x</think>y"


class TestToolCallTags:
    """Tests for <tool_call> blocks."""

    BLOCK = '<tool_call>{"name": "get_weather", "arguments": {"city": "Paris", "unit": "c"}}</tool_call>'

    def test_block_becomes_tool_call(self):
        """A complete block yields one tool call and no content."""
        result = scan_all(MarkupScanner(), [self.BLOCK])
        assert result.tool_calls == [
            {"name": "get_weather", "arguments": {"city": "Paris", "unit": "c"}}
        ]
        assert result.content == ""

    def test_text_around_block(self):
        """Content before and after the block is kept in order."""
        result = scan_all(MarkupScanner(), ["Let me check. " + self.BLOCK + " Done."])
        assert result.content == "Let me check.  Done."
        assert len(result.tool_calls) == 1

    @pytest.mark.parametrize("cut_count", [1, 2, 3, 5])
    def test_split_block_reconstructs_identically(self, cut_count):
        """Any set of cut points reconstructs the same call as one chunk."""
        whole = scan_all(MarkupScanner(), [self.BLOCK]).tool_calls
        positions = range(1, len(self.BLOCK))
        rng = random.Random(cut_count)
        for _ in range(200):
            cuts = tuple(rng.sample(positions, cut_count))
            result = scan_all(MarkupScanner(), split_at(self.BLOCK, cuts))
            assert result.tool_calls == whole, cuts
            assert result.content == ""

    def test_every_single_cut_point(self):
        """Every single cut point of the block reconstructs the call."""
        whole = scan_all(MarkupScanner(), [self.BLOCK]).tool_calls
        for cut in range(1, len(self.BLOCK)):
            result = scan_all(MarkupScanner(), [self.BLOCK[:cut], self.BLOCK[cut:]])
            assert result.tool_calls == whole, cut

    def test_malformed_block_is_content(self):
        """A block that does not parse is emitted verbatim."""
        block = "<tool_call>{broken json</tool_call>"
        result = scan_all(MarkupScanner(), [block])
        assert result.tool_calls == []
        assert result.content == block

    def test_unterminated_block_flushed_verbatim(self):
        """An unterminated block at stream end becomes literal content."""
        text = 'before <tool_call>{"name": "f", "argu'
        result = scan_all(MarkupScanner(), [text])
        assert result.tool_calls == []
        assert result.content == text

    def test_undeclared_tool_kept_as_content(self):
        """Calls to tools the request did not declare are not extracted."""
        scanner = MarkupScanner(known_tools=["other_tool"])
        result = scan_all(scanner, [self.BLOCK])
        assert result.tool_calls == []
        assert result.content == self.BLOCK

    def test_multiple_blocks(self):
        """Consecutive blocks yield calls in order."""
        second = '<tool_call>{"name": "get_time", "arguments": {}}</tool_call>'
        result = scan_all(MarkupScanner(), [self.BLOCK + "\n" + second])
        assert [call["name"] for call in result.tool_calls] == ["get_weather", "get_time"]
        assert result.content == "\n"

    def test_disabled_tool_parsing(self):
        """With tool parsing off, blocks pass through as content."""
        scanner = MarkupScanner(parse_tool_calls=False)
        result = scan_all(scanner, [self.BLOCK])
        assert result.content == self.BLOCK
        assert result.tool_calls == []

    def test_reasoning_and_tool_call(self):
        """Reasoning, content and tool calls combine in one reply."""
        text = "<think>need weather</think>Checking." + self.BLOCK
        result = scan_all(MarkupScanner(), [text])
        assert result.reasoning == "need weather"
        assert result.content == "Checking."
        assert len(result.tool_calls) == 1
