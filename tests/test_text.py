"""Sanitizer tests — what survives each policy."""

import pytest

from gema.services.text import clean_rich_text, clean_text


def test_comparison_operators_are_kept_escaped():
    assert clean_text("a < b and c > d") == "a &lt; b and c &gt; d"
    assert clean_text("if x < 5 and y > 3") == "if x &lt; 5 and y &gt; 3"


def test_unterminated_tag_does_not_survive():
    cleaned = clean_text("<img src=x onerror=alert(1)")
    assert "<img" not in cleaned
    assert "onerror" not in cleaned


def test_quoted_angle_bracket_inside_attribute():
    assert clean_text('<a href="x>y">t</a>') == "t"


@pytest.mark.parametrize("raw,expected", [
    ("<b>Well</b> done<script>x()</script>", "Well done"),
    ("  <p>padded</p>  ", "padded"),
    ("<p></p>", ""),
    ("<style>p{}</style>", ""),
])
def test_strict_policy_strips_all_markup(raw, expected):
    assert clean_text(raw) == expected


def test_rich_policy_keeps_inline_formatting():
    assert clean_rich_text("<b>bold</b><br>next") == "<b>bold</b><br>next"


def test_rich_policy_drops_scripts_and_handlers():
    cleaned = clean_rich_text('<em onclick="x()">hi</em><script>steal()</script><iframe></iframe>')
    assert cleaned == "<em>hi</em>"
