"""Tests for file reference shapes and extraction."""

from context_compactor.core.file_refs import (
    FileReferenceExtractor,
    extract_file_reference,
    extract_file_references,
    is_superseded,
    superseded_notice,
)
from context_compactor.types import AccessKind, BlockType, ContentBlock, DedupConfig


class TestShapes:
    def test_structured_read(self):
        block = ContentBlock(type=BlockType.TOOL_RESULT, text="x = 1\n", tool_name="read_file", path="src/a.py")
        match = extract_file_reference(block)
        assert match.kind == AccessKind.TOOL_READ
        assert match.path == "src/a.py"
        assert match.content == "x = 1\n"
        assert match.span is None

    def test_header_read(self):
        block = ContentBlock(type=BlockType.TEXT, text="[read_file for 'src/a.py'] Result:\nx = 1\n")
        match = extract_file_reference(block)
        assert match.kind == AccessKind.TOOL_READ
        assert match.path == "src/a.py"
        assert match.content == "x = 1\n"

    def test_write_result(self):
        block = ContentBlock(type=BlockType.TOOL_RESULT, text="saved", tool_name="write_to_file", path="src/a.py")
        assert extract_file_reference(block).kind == AccessKind.WRITE

    def test_unknown_tool_is_not_a_file(self):
        block = ContentBlock(type=BlockType.TOOL_RESULT, text="output", tool_name="execute_command", path="src/a.py")
        assert extract_file_references(block) == []

    def test_inline_mentions(self):
        text = (
            'See <file_content path="a.py">one</file_content> and '
            '<file_content path="b.py">two</file_content>.'
        )
        matches = extract_file_references(ContentBlock(type=BlockType.TEXT, text=text))
        assert [m.path for m in matches] == ["a.py", "b.py"]
        assert all(m.kind == AccessKind.MENTION for m in matches)
        start, end = matches[0].span
        assert text[start:end] == '<file_content path="a.py">one</file_content>'

    def test_file_content_block(self):
        block = ContentBlock(type=BlockType.FILE_CONTENT, text="body", path="docs/readme.md")
        match = extract_file_reference(block)
        assert match.kind == AccessKind.MENTION
        assert match.path == "docs/readme.md"

    def test_images_and_non_text_are_skipped(self):
        assert extract_file_references(ContentBlock(type=BlockType.IMAGE, path="x.png")) == []
        assert extract_file_references(ContentBlock(type=BlockType.TEXT, text=None)) == []

    def test_custom_tool_names(self):
        extractor = FileReferenceExtractor(DedupConfig(read_tools=["open_file"], write_tools=[]))
        block = ContentBlock(type=BlockType.TOOL_RESULT, text="x", tool_name="open_file", path="a.py")
        assert extractor.extract_one(block).path == "a.py"


class TestSupersededNotice:
    def test_whole_block_notice(self):
        block = ContentBlock(type=BlockType.TOOL_RESULT, text="x" * 500, tool_name="read_file", path="src/app.py")
        notice = superseded_notice(extract_file_reference(block))
        assert notice == "[read_file for 'src/app.py'] superseded, see later read"
        assert is_superseded(notice)

    def test_span_notice_is_not_extracted_again(self):
        text = '<file_content path="a.py">superseded, see later read</file_content>'
        assert extract_file_references(ContentBlock(type=BlockType.TEXT, text=text)) == []

    def test_long_text_mentioning_marker_is_not_a_notice(self):
        assert not is_superseded("superseded, see later read " + "x" * 400)
