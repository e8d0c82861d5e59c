from __future__ import annotations

from datetime import datetime, timezone

import pytest

from codecoach.errors import InvalidRequestError
from codecoach.models import TraceEvent, html_to_text, normalize_assignment


def test_normalize_assignment_reads_store_row_shape() -> None:
    assignment = normalize_assignment(
        {
            "assignment": {
                "id": "a-42",
                "courseId": "cs101",
                "title": "Loops",
                "instructions_html": "<p>Sum the list.</p><ul><li>Use a loop</li></ul>",
                "fundamentalsJson": '["loops", "accumulators"]',
                "objectives": ["Iterate", "Accumulate"],
                "tutorialUrl": "https://example.test/loops",
                "starter_bundle": '{"zipPath": "cs101/a-42/starter.zip", "open": ["main.py"]}',
            }
        }
    )

    assert assignment.id == "a-42"
    assert assignment.course_id == "cs101"
    assert assignment.instructions == "Sum the list.\nUse a loop"
    assert assignment.fundamentals == ["loops", "accumulators"]
    assert assignment.objectives == ["Iterate", "Accumulate"]
    assert assignment.tutorial_url == "https://example.test/loops"
    assert assignment.starter_bundle is not None
    assert assignment.starter_bundle.archive_ref == "cs101/a-42/starter.zip"
    assert assignment.starter_bundle.open == ["main.py"]


def test_normalize_assignment_defaults_optional_fields() -> None:
    assignment = normalize_assignment({"assignmentId": 7, "fundamentals": "loops, lists"})

    assert assignment.id == "7"
    assert assignment.title == "Untitled assignment"
    assert assignment.fundamentals == ["loops", "lists"]
    assert assignment.starter_bundle is None


def test_normalize_assignment_ignores_unusable_starter_bundle() -> None:
    assert normalize_assignment({"id": "x", "starterBundle": "{not json"}).starter_bundle is None
    assert normalize_assignment({"id": "x", "starterBundle": {"open": ["a.py"]}}).starter_bundle is None


@pytest.mark.parametrize("payload", [None, [], {"title": "no id"}, {"id": "  "}])
def test_normalize_assignment_requires_an_id(payload) -> None:
    with pytest.raises(InvalidRequestError):
        normalize_assignment(payload)


def test_html_to_text_unescapes_entities() -> None:
    assert html_to_text("<h1>Title</h1><p>a &lt; b</p>") == "Title\na < b"


def test_trace_event_wire_format() -> None:
    event = TraceEvent(
        kind="chat_user",
        ts=datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
        payload={"text": "hi"},
    )

    assert event.to_wire() == {"type": "chat_user", "ts": "2026-01-02T03:04:05Z", "payload": {"text": "hi"}}
    assert TraceEvent.checkpoint({"line": 3}).text is None
