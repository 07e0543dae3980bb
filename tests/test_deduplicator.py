"""Tests for the Deduplicator pass."""

from conftest import code_body, read_block

from context_compactor.core.deduplicator import Deduplicator
from context_compactor.core.ledger import UpdateLedger
from context_compactor.types import BlockType, ContentBlock, Edit, EditReason, Message


def _msg(role, *blocks):
    return Message(role=role, blocks=list(blocks))


class TestDeduplicator:
    def test_keeps_only_latest_read(self, dedup_transcript, make_view):
        view = make_view(dedup_transcript)
        changes = Deduplicator().propose(view)

        assert [(c.msg_idx, list(c.block_edits)) for c in changes] == [(3, [1]), (9, [1])]
        for change in changes:
            notice = change.block_edits[1]
            assert notice == "[read_file for 'src/app.py'] superseded, see later read"
            assert len(notice) < 80
            assert change.reason == EditReason.DUPLICATE
            assert change.metadata["paths"] == ["src/app.py"]
            assert change.chars_saved == 500 - len(notice)

    def test_record_groups_by_path(self, dedup_transcript, make_view):
        record = Deduplicator().build_record(make_view(dedup_transcript))
        assert list(record) == ["src/app.py"]
        assert [ref.msg_idx for ref, _ in record["src/app.py"]] == [3, 9, 15]
        hashes = {ref.content_hash for ref, _ in record["src/app.py"]}
        assert len(hashes) == 1

    def test_write_supersedes_read(self, make_transcript, make_view):
        transcript = make_transcript(16, {
            4: _msg("user", read_block("src/db.py", code_body(400))),
            6: _msg("user", ContentBlock(
                type=BlockType.TOOL_RESULT, text=code_body(420, "row"),
                tool_name="write_to_file", path="src/db.py",
            )),
        })
        changes = Deduplicator().propose(make_view(transcript))
        assert [c.msg_idx for c in changes] == [4]
        assert changes[0].block_edits[0] == "[read_file for 'src/db.py'] superseded, see later read"

    def test_inline_spans_replaced_individually(self, make_transcript, make_view):
        a_old = code_body(300, "alpha")
        b_body = code_body(300, "beta")
        text = (
            f'Context:\n<file_content path="a.py">{a_old}</file_content>\n'
            f'<file_content path="b.py">{b_body}</file_content>\nEnd.'
        )
        transcript = make_transcript(16, {
            4: Message.from_text("user", text),
            8: Message.from_text("user", f'<file_content path="a.py">{code_body(310, "alpha")}</file_content>'),
        })
        changes = Deduplicator().propose(make_view(transcript))
        assert len(changes) == 1
        new_text = changes[0].block_edits[0]
        assert '<file_content path="a.py">superseded, see later read</file_content>' in new_text
        assert b_body in new_text
        assert new_text.startswith("Context:\n") and new_text.endswith("\nEnd.")

    def test_anchor_pair_is_never_rewritten(self, make_transcript, make_view):
        body = code_body(500)
        transcript = make_transcript(16, {
            1: _msg("assistant", read_block("src/app.py", body)),
            5: _msg("assistant", read_block("src/app.py", body)),
        })
        assert Deduplicator().propose(make_view(transcript)) == []

    def test_recent_read_supersedes_but_is_kept(self, make_transcript, make_view):
        body = code_body(500)
        transcript = make_transcript(16, {
            5: _msg("assistant", read_block("src/app.py", body)),
            13: _msg("assistant", read_block("src/app.py", body)),
        })
        changes = Deduplicator().propose(make_view(transcript))
        assert [c.msg_idx for c in changes] == [5]

    def test_idempotent_after_recording(self, dedup_transcript, make_view):
        ledger = UpdateLedger()
        dedup = Deduplicator()
        for change in dedup.propose(make_view(dedup_transcript, ledger)):
            for block_idx, text in change.block_edits.items():
                ledger.record_edit(change.msg_idx, block_idx, Edit(ledger.next_timestamp(), text, change.reason))
        assert dedup.propose(make_view(dedup_transcript, ledger)) == []

    def test_malformed_block_is_skipped(self, dedup_transcript, make_view):
        dedup_transcript[5] = _msg("assistant", ContentBlock(type=BlockType.TEXT, text=None))
        changes = Deduplicator().propose(make_view(dedup_transcript))
        assert [c.msg_idx for c in changes] == [3, 9]
