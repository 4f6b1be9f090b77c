from datetime import date

import pytest

from jira_bridge.adf import adf_to_text, text_to_adf
from jira_bridge.dates import parse_date, parse_time_estimate

TODAY = date(2024, 1, 31)


class TestParseDate:
    """Tests for relative, localized and formatted date input."""

    @pytest.mark.parametrize("value,expected", [
        ("today", "2024-01-31"),
        ("dnes", "2024-01-31"),
        ("tomorrow", "2024-02-01"),
        ("zítra", "2024-02-01"),
        ("yesterday", "2024-01-30"),
        ("včera", "2024-01-30"),
        ("next week", "2024-02-07"),
        ("příští týden", "2024-02-07"),
        ("next month", "2024-02-29"),
        ("+7d", "2024-02-07"),
        ("+2w", "2024-02-14"),
        ("+1m", "2024-02-29"),
        ("+1y", "2025-01-31"),
    ])
    def test_relative(self, value, expected):
        assert parse_date(value, today=TODAY) == expected

    def test_iso(self):
        assert parse_date("2024-12-31", today=TODAY) == "2024-12-31"

    def test_european(self):
        assert parse_date("31.12.2024", today=TODAY) == "2024-12-31"
        assert parse_date("1/2/2024", today=TODAY) == "2024-02-01"

    def test_iso_datetime(self):
        assert parse_date("2024-05-06T10:00:00", today=TODAY) == "2024-05-06"

    def test_unparseable_passes_through(self):
        assert parse_date("someday", today=TODAY) == "someday"
        assert parse_date("31.02.2024", today=TODAY) == "31.02.2024"


@pytest.mark.parametrize("value,expected", [
    ("2h", "2h"),
    ("3d 4h", "3d 4h"),
    ("2 hours", "2h"),
    ("1 day 4 hours", "1d 4h"),
    ("3 dny", "3d"),
    ("2 týdny", "2w"),
    ("30 minut", "30m"),
])
def test_parse_time_estimate(value, expected):
    assert parse_time_estimate(value) == expected


def test_parse_time_estimate_passes_through():
    assert parse_time_estimate("a while") == "a while"


class TestAdf:
    """Tests for text to ADF conversion and back."""

    def test_empty(self):
        assert text_to_adf("") is None
        assert adf_to_text(None) == ""

    def test_paragraph_with_line_break(self):
        doc = text_to_adf("First line\nSecond line")
        paragraph = doc["content"][0]
        assert paragraph["type"] == "paragraph"
        assert [n["type"] for n in paragraph["content"]] == ["text", "hardBreak", "text"]

    def test_heading_bullets_code(self):
        doc = text_to_adf("## Steps\n\n- one\n- two\n\n```\nprint(1)\n```")
        heading, bullets, code = doc["content"]
        assert heading["type"] == "heading"
        assert heading["attrs"] == {"level": 2}
        assert bullets["type"] == "bulletList"
        assert len(bullets["content"]) == 2
        assert code["type"] == "codeBlock"
        assert code["content"][0]["text"] == "print(1)"

    def test_bold(self):
        doc = text_to_adf("This is **important** now")
        nodes = doc["content"][0]["content"]
        assert nodes[1] == {"type": "text", "text": "important", "marks": [{"type": "strong"}]}

    def test_adf_to_text(self):
        text = adf_to_text(text_to_adf("# Title\n\nBody line\n\n- a\n- b"))
        assert text == "# Title\n\nBody line\n\n• a\n• b"

    def test_plain_string_passthrough(self):
        assert adf_to_text("already text") == "already text"
