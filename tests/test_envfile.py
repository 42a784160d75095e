"""Tests for structured ``.env`` editing."""
from __future__ import annotations

import pytest

from devsitectl.envfile import EnvironmentDocument, quote_value, unquote_value

TEMPLATE = """APP_NAME=Laravel
APP_ENV=local
APP_KEY=

# Database
DB_CONNECTION=sqlite
# DB_HOST=127.0.0.1
# DB_PORT=3306

export MAIL_FROM="hello@example.com"
"""


def test_parse_render_preserves_layout() -> None:
    document = EnvironmentDocument.parse(TEMPLATE)

    assert document.render() == TEMPLATE
    assert document.keys() == ["APP_NAME", "APP_ENV", "APP_KEY", "DB_CONNECTION", "MAIL_FROM"]
    assert document.get("MAIL_FROM") == "hello@example.com"
    assert document.get("DB_HOST") is None
    assert "APP_KEY" in document


def test_set_rewrites_existing_key_in_place() -> None:
    document = EnvironmentDocument.parse(TEMPLATE)

    assert document.set("DB_CONNECTION", "mysql") is True
    lines = document.render().splitlines()

    assert lines[5] == "DB_CONNECTION=mysql"
    assert document.set("DB_CONNECTION", "mysql") is False


def test_absent_key_replaces_commented_placeholder() -> None:
    document = EnvironmentDocument.parse(TEMPLATE)

    document.set("DB_HOST", "127.0.0.1")
    rendered = document.render()

    assert "# DB_HOST=127.0.0.1" not in rendered
    assert rendered.splitlines()[6] == "DB_HOST=127.0.0.1"
    assert rendered.count("DB_HOST=") == 1


def test_absent_key_without_placeholder_is_appended() -> None:
    document = EnvironmentDocument.parse(TEMPLATE)

    document.set("QUEUE_CONNECTION", "sync")

    assert document.render().endswith("QUEUE_CONNECTION=sync\n")


def test_update_reports_changed_keys_and_is_idempotent() -> None:
    document = EnvironmentDocument.parse(TEMPLATE)
    values = {"APP_NAME": "blog-app", "APP_ENV": "local", "DB_DATABASE": "blog_app"}

    assert document.update(values) == ["APP_NAME", "DB_DATABASE"]
    first = document.render()

    again = EnvironmentDocument.parse(first)
    assert again.update(values) == []
    assert again.render() == first


def test_missing_trailing_newline_is_kept() -> None:
    document = EnvironmentDocument.parse("A=1")

    document.set("A", "2")

    assert document.render() == "A=2"


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("plain", "plain"),
        ("", ""),
        ("two words", '"two words"'),
        ("pa#ss", '"pa#ss"'),
        ('say "hi"', '"say \\"hi\\""'),
        ("a=b", '"a=b"'),
        ("base64:abc+/=", '"base64:abc+/="'),
    ],
)
def test_quote_value(value: str, expected: str) -> None:
    assert quote_value(value) == expected


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ('"quoted value"', "quoted value"),
        ("'single'", "single"),
        ("bare # trailing comment", "bare"),
        ('"esc \\"q\\""', 'esc "q"'),
    ],
)
def test_unquote_value(raw: str, expected: str) -> None:
    assert unquote_value(raw) == expected


def test_quoted_values_read_back_unchanged() -> None:
    document = EnvironmentDocument.parse("")

    document.set("DB_PASSWORD", 's3cr3t "pw" #1')

    reparsed = EnvironmentDocument.parse(document.render())
    assert reparsed.get("DB_PASSWORD") == 's3cr3t "pw" #1'
