"""Tests for events/log.py -- the append-only execution log."""

import pytest

from events.log import EventFinalizedError, ExecutionLog
from models.domain import EventKind


def _append(log: ExecutionLog, **overrides: object):
    kwargs: dict = {
        "from_agent_id": "w1",
        "from_agent_name": "Worker",
        "kind": EventKind.THOUGHT,
    }
    kwargs.update(overrides)
    return log.append(**kwargs)


class TestAppend:
    def test_sequence_and_ids_increase(self) -> None:
        log = ExecutionLog("run_1")
        first = _append(log)
        second = _append(log)
        assert (first.sequence, second.sequence) == (0, 1)
        assert first.id == "run_1-evt-0000"
        assert second.id == "run_1-evt-0001"
        assert len(log) == 2

    def test_events_snapshot_is_a_copy(self) -> None:
        log = ExecutionLog("run_1")
        _append(log)
        snapshot = log.events()
        _append(log)
        assert len(snapshot) == 1
        assert [e.sequence for e in log] == [0, 1]

    def test_get_unknown_returns_none(self) -> None:
        assert ExecutionLog("run_1").get("nope") is None


class TestStreaming:
    def test_append_content_to_open_entry(self) -> None:
        log = ExecutionLog("run_1")
        event = _append(log, is_streaming=True)
        log.append_content(event.id, "Scanning ")
        log.append_content(event.id, "logs...")
        assert log.get(event.id).content == "Scanning logs..."

    def test_append_content_after_finalize_raises(self) -> None:
        log = ExecutionLog("run_1")
        event = _append(log, is_streaming=True)
        log.finalize(event.id)
        with pytest.raises(EventFinalizedError):
            log.append_content(event.id, "late")

    def test_append_content_to_non_streaming_entry_raises(self) -> None:
        log = ExecutionLog("run_1")
        event = _append(log, content="fixed")
        with pytest.raises(EventFinalizedError):
            log.append_content(event.id, "more")

    def test_finalize_replaces_content_once(self) -> None:
        log = ExecutionLog("run_1")
        event = _append(log, is_streaming=True, content="raw SUMMARY: {}")
        assert log.finalize(event.id, "raw") is True
        assert log.get(event.id).content == "raw"
        assert log.get(event.id).is_streaming is False

        assert log.finalize(event.id, "changed") is False
        assert log.get(event.id).content == "raw"

    def test_finalize_streaming_closes_only_open_entries(self) -> None:
        log = ExecutionLog("run_1")
        closed = _append(log, content="done")
        open_entry = _append(log, is_streaming=True, content="partial")

        finalized = log.finalize_streaming()
        assert [e.id for e in finalized] == [open_entry.id]
        assert log.get(open_entry.id).content == "partial"
        assert not any(e.is_streaming for e in log)
        assert log.get(closed.id).content == "done"
        assert log.finalize_streaming() == []


class TestReadOnlyAccess:
    def test_returned_entries_do_not_alias_the_log(self) -> None:
        log = ExecutionLog("run_1")
        appended = _append(log, content="final")

        appended.content = "edited"
        (listed,) = log.events()
        listed.content = "edited"
        listed.is_streaming = True
        fetched = log.get(appended.id)
        fetched.content = "edited"
        for entry in log:
            entry.content = "edited"

        stored = log.get(appended.id)
        assert stored.content == "final"
        assert stored.is_streaming is False
        with pytest.raises(EventFinalizedError):
            log.append_content(appended.id, "more")


class TestTranscript:
    def test_render_transcript(self) -> None:
        log = ExecutionLog("run_1")
        log.append(
            from_agent_id="sys",
            from_agent_name="SYSTEM",
            kind=EventKind.INSTRUCTION,
            content='DIRECTIVE: "check"',
        )
        log.append(
            from_agent_id="global-sup",
            from_agent_name="Global Orchestrator",
            to_agent_id="team-db-sup",
            kind=EventKind.INSTRUCTION,
            content="line one\nline two",
        )

        assert log.render_transcript().splitlines() == [
            "[INSTRUCTION] SYSTEM",
            '    DIRECTIVE: "check"',
            "[INSTRUCTION] Global Orchestrator -> team-db-sup",
            "    line one",
            "    line two",
        ]
