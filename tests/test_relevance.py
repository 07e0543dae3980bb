"""Tests for the RelevanceFilter pass."""

import math
from datetime import timedelta

from conftest import code_body, read_block

from context_compactor.core.relevance import RELEVANCE_NOTICE_PREFIX, RelevanceFilter
from context_compactor.types import BlockType, ContentBlock, EditReason, Message

LOGIN_BUG = "The login handler fails when the session cookie expires. " * 6


def _tool_output(text):
    return Message(role="user", blocks=[
        ContentBlock(type=BlockType.TOOL_RESULT, text=text, tool_name="execute_command"),
    ])


def _exploration(topic: str, extra: str = "") -> str:
    body = f"Listing {topic} entries: alpha beta gamma delta epsilon zeta. " * 6
    return extra + body


class TestGraph:
    def test_question_links_to_reply(self, make_transcript, make_view):
        transcript = make_transcript(12, {4: Message.from_text("user", "How should the cache be invalidated?")})
        graph = RelevanceFilter().build_graph(make_view(transcript))
        assert 5 in graph[4]

    def test_path_mention_links_to_latest_holder(self, make_transcript, make_view):
        transcript = make_transcript(16, {
            4: Message.from_text("user", "Please look at src/app.py first."),
            6: Message.from_text("assistant", "Opened src/app.py and read it."),
            8: Message.from_text("user", "Now change src/app.py again."),
        })
        graph = RelevanceFilter().build_graph(make_view(transcript))
        assert graph[4] == {6}
        assert graph[6] == {8}

    def test_back_reference_links_to_similar_message(self, make_transcript, make_view):
        transcript = make_transcript(16, {
            3: Message.from_text("assistant", "The scheduler retries jobs with exponential backoff."),
            7: Message.from_text("user", "As mentioned, the scheduler backoff retries jobs."),
        })
        graph = RelevanceFilter().build_graph(make_view(transcript))
        assert 7 in graph[3]


class TestScore:
    def test_temporal_uses_timestamps(self, make_transcript, make_view, timestamped):
        transcript = timestamped(make_transcript(20), step=timedelta(hours=1))
        records = RelevanceFilter().score(make_view(transcript))
        assert math.isclose(records[11].temporal, math.exp(-1), rel_tol=1e-6)
        assert math.isclose(records[19].temporal, 1.0)

    def test_temporal_fallback_without_timestamps(self, make_transcript, make_view):
        records = RelevanceFilter().score(make_view(make_transcript(20)))
        assert math.isclose(records[3].temporal, math.exp(-(16 * 0.25) / 8))

    def test_resolved_problem_phase(self, make_transcript, make_view):
        transcript = make_transcript(20, {
            4: Message.from_text("user", LOGIN_BUG),
            6: Message.from_text("user", "Confirmed, all tests passing."),
        })
        record = RelevanceFilter().score(make_view(transcript))[4]
        assert record.phase_label == "resolved debugging"
        assert record.obsolescence == 0.5

    def test_open_problem_phase(self, make_transcript, make_view):
        transcript = make_transcript(20, {4: Message.from_text("user", LOGIN_BUG)})
        record = RelevanceFilter().score(make_view(transcript))[4]
        assert record.phase_label == "debugging"
        assert record.phase == 0.8

    def test_changed_file_is_obsolete(self, make_transcript, make_view):
        transcript = make_transcript(20, {5: Message(role="assistant", blocks=[read_block("src/cfg.py", code_body(400))])})
        relevance = RelevanceFilter()
        assert relevance.score(make_view(transcript))[5].obsolescence == 0.0
        records = relevance.score(make_view(transcript), changed_files={"src/cfg.py": 20})
        assert records[5].obsolescence == 1.0

    def test_superseded_read_is_obsolete(self, dedup_transcript, make_view):
        records = RelevanceFilter().score(make_view(dedup_transcript))
        assert records[3].obsolescence == 1.0
        assert records[15].obsolescence == 0.0


class TestPropose:
    def test_removes_resolved_debugging_exchange(self, make_transcript, make_view):
        transcript = make_transcript(20, {
            4: Message.from_text("user", LOGIN_BUG),
            6: Message.from_text("user", "Confirmed, all tests passing."),
        })
        changes = RelevanceFilter().propose(make_view(transcript))
        assert [c.msg_idx for c in changes] == [4]
        notice = changes[0].block_edits[0]
        assert notice == f"{RELEVANCE_NOTICE_PREFIX}debugging exchange, resolved: Confirmed, all tests passing.]"
        assert changes[0].reason == EditReason.RELEVANCE

    def test_planning_is_kept(self, make_transcript, make_view):
        text = "We decided to use PostgreSQL for the job queue storage layer. " * 6
        transcript = make_transcript(20, {4: Message.from_text("user", text)})
        assert RelevanceFilter().propose(make_view(transcript)) == []

    def test_referenced_message_is_kept(self, make_transcript, make_view):
        transcript = make_transcript(20, {
            4: _tool_output(_exploration("src/app.py")),
            8: Message.from_text("user", "Open src/app.py again."),
        })
        assert RelevanceFilter().propose(make_view(transcript)) == []

    def test_unreferenced_exploration_is_removed(self, make_transcript, make_view):
        transcript = make_transcript(20, {4: _tool_output(_exploration("src/app.py"))})
        changes = RelevanceFilter().propose(make_view(transcript))
        assert [c.msg_idx for c in changes] == [4]
        assert changes[0].block_edits[0].startswith(f"{RELEVANCE_NOTICE_PREFIX}exploration message removed: ")

    def test_stale_chain_removed_together(self, make_transcript, make_view):
        transcript = make_transcript(20, {
            4: _tool_output(_exploration("queue")),
            6: _tool_output(_exploration("queue", "As mentioned, the queue listing repeats. ")),
        })
        relevance = RelevanceFilter()
        view = make_view(transcript)
        assert 6 in relevance.build_graph(view)[4]
        changes = relevance.propose(view)
        assert [c.msg_idx for c in changes] == [4, 6]

    def test_short_messages_are_ignored(self, make_transcript, make_view):
        assert RelevanceFilter().propose(make_view(make_transcript(20))) == []

    def test_recent_window_is_protected(self, make_transcript, make_view):
        transcript = make_transcript(20, {15: _tool_output(_exploration("cache"))})
        assert RelevanceFilter().propose(make_view(transcript)) == []

    def test_other_text_blocks_are_emptied(self, make_transcript, make_view):
        msg = Message(role="user", blocks=[
            ContentBlock(type=BlockType.IMAGE),
            ContentBlock(type=BlockType.TOOL_RESULT, text=_exploration("logs"), tool_name="execute_command"),
            ContentBlock(type=BlockType.TEXT, text="Output above came from the logs listing."),
        ])
        changes = RelevanceFilter().propose(make_view(make_transcript(20, {4: msg})))
        assert len(changes) == 1
        edits = changes[0].block_edits
        assert 0 not in edits
        assert edits[1].startswith(RELEVANCE_NOTICE_PREFIX)
        assert edits[2] == ""

    def test_notice_is_not_removed_again(self, make_transcript, make_view):
        transcript = make_transcript(20, {4: _tool_output(_exploration("logs"))})
        view = make_view(transcript)
        relevance = RelevanceFilter()
        for change in relevance.propose(view):
            view.stage(change)
        assert relevance.propose(view) == []
