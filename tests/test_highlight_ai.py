import json

import pytest

from errors import NetworkError
from services.highlight_ai import AiHighlighter, build_prompt, extract_json, parse_classifications
from table_view import Highlight


class FakeBlock:
    def __init__(self, text, type='text'):
        self.type = type
        self.text = text


class FakeMessage:
    def __init__(self, text):
        self.content = text if isinstance(text, list) else [FakeBlock(text)]


class FakeMessages:
    def __init__(self, text):
        self.text = text
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if isinstance(self.text, Exception):
            raise self.text
        return FakeMessage(self.text)


class FakeAnthropic:
    def __init__(self, text):
        self.messages = FakeMessages(text)


ROWS = [
    {"id": "1", "IsAnomalous": "true"},
    {"id": "2", "IsAnomalous": "false"},
    {"id": "3"},
]


def test_classify_parses_reply():
    client = FakeAnthropic(json.dumps({"highlightedRows": ["red", "green", "none"]}))
    highlighter = AiHighlighter(client=client, model="test-model")
    result = highlighter.classify(ROWS, True)
    assert result == [Highlight.RED, Highlight.GREEN, Highlight.NONE]
    call = client.messages.calls[0]
    assert call["model"] == "test-model"
    assert '"IsAnomalous": "true"' in call["messages"][0]["content"]


def test_boolean_reply_in_code_fence():
    text = 'Here you go:\n```json\n{"highlightedRows": [true, false, false]}\n```'
    highlighter = AiHighlighter(client=FakeAnthropic(text))
    assert highlighter.classify(ROWS, True) == [Highlight.RED, Highlight.NONE, Highlight.NONE]


def test_disabled_skips_the_call():
    client = FakeAnthropic("unused")
    result = AiHighlighter(client=client).classify(ROWS, False)
    assert result == [Highlight.NONE] * 3
    assert client.messages.calls == []


def test_wrong_length_is_rejected():
    highlighter = AiHighlighter(client=FakeAnthropic('{"highlightedRows": [true]}'))
    with pytest.raises(NetworkError):
        highlighter.classify(ROWS, True)


def test_garbage_reply_is_rejected():
    highlighter = AiHighlighter(client=FakeAnthropic("I cannot help with that"))
    with pytest.raises(NetworkError):
        highlighter.classify(ROWS, True)


def test_unconfigured_highlighter():
    with pytest.raises(NetworkError):
        AiHighlighter(api_key=None).classify(ROWS, True)


def test_parse_classifications_rejects_unknown_values():
    with pytest.raises(ValueError):
        parse_classifications({"highlightedRows": ["maybe"]}, 1)
    with pytest.raises(ValueError):
        parse_classifications({"rows": []}, 0)


def test_extract_json_finds_embedded_object():
    assert extract_json('prefix {"highlightedRows": []} suffix') == {"highlightedRows": []}


def test_prompt_lists_every_row():
    prompt = build_prompt(ROWS, True)
    assert "exactly 3 entries" in prompt
    assert "Is Highlighting Enabled: true" in prompt
    assert '2: {"id": "3"}' in prompt


@pytest.mark.parametrize("content", [
    [],
    [FakeBlock("", type="tool_use")],
])
def test_reply_without_text_block_is_rejected(content):
    highlighter = AiHighlighter(client=FakeAnthropic(content))
    with pytest.raises(NetworkError):
        highlighter.classify(ROWS, True)


def test_text_block_after_other_blocks_is_used():
    content = [FakeBlock("", type="thinking"), FakeBlock('{"highlightedRows": ["none", "none", "red"]}')]
    highlighter = AiHighlighter(client=FakeAnthropic(content))
    assert highlighter.classify(ROWS, True) == [Highlight.NONE, Highlight.NONE, Highlight.RED]


def test_extract_json_prefers_fenced_block_over_prose_braces():
    reply = 'Result {see below}:\n```json\n{"highlightedRows": [false]}\n```'
    assert extract_json(reply) == {"highlightedRows": [False]}
