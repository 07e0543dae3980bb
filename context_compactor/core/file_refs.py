"""File reference shapes: the closed set of ways a file shows up in a block.

Three shapes are recognised, each with the same ``extract(block)`` capability:

- ``ToolReadShape``: a read tool's result, either structured (``tool_name`` +
  ``path`` on a tool_result block) or headed ``[read_file for 'x'] Result:``
- ``WriteShape``: a write/modify tool's result, same two encodings
- ``MentionShape``: inline ``<file_content path="x">...</file_content>`` spans,
  or a file_content block carrying a ``path``
"""

from __future__ import annotations

import hashlib
import logging
import re

from ..types import AccessKind, BlockType, ContentBlock, DedupConfig, FileRefMatch

logger = logging.getLogger(__name__)

SUPERSEDED_MARKER = "superseded, see later read"

_TOOL_HEADER_RE = re.compile(
    r"^\s*\[(?P<tool>[\w.-]+) for '(?P<path>[^'\n]+)'\] Result:[ \t]*\n?(?P<body>.*)\Z",
    re.DOTALL,
)
_MENTION_RE = re.compile(
    r'<file_content path="(?P<path>[^"\n]+)">(?P<body>.*?)</file_content>',
    re.DOTALL,
)


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8", errors="replace")).hexdigest()[:16]


def is_superseded(text: str) -> bool:
    """True for content that is already a superseded notice."""
    return SUPERSEDED_MARKER in text and len(text) < 300


def superseded_notice(match: FileRefMatch) -> str:
    """Short replacement for an earlier occurrence of a file."""
    if match.span is not None:
        return f'<file_content path="{match.path}">{SUPERSEDED_MARKER}</file_content>'
    label = match.label or match.kind.value
    return f"[{label} for '{match.path}'] {SUPERSEDED_MARKER}"


class _ToolShape:
    """Whole-block tool result for a fixed set of tool names."""

    kind: AccessKind = AccessKind.TOOL_READ

    def __init__(self, tool_names: list[str]) -> None:
        self.tool_names = set(tool_names)

    def extract(self, block: ContentBlock, text: str) -> list[FileRefMatch]:
        if block.type == BlockType.TOOL_RESULT and block.tool_name in self.tool_names and block.path:
            return [FileRefMatch(kind=self.kind, path=block.path, content=text, label=block.tool_name)]
        if block.type in (BlockType.TOOL_RESULT, BlockType.TEXT):
            m = _TOOL_HEADER_RE.match(text)
            if m and m.group("tool") in self.tool_names:
                return [FileRefMatch(
                    kind=self.kind,
                    path=m.group("path").strip(),
                    content=m.group("body"),
                    label=m.group("tool"),
                )]
        return []


class ToolReadShape(_ToolShape):
    kind = AccessKind.TOOL_READ


class WriteShape(_ToolShape):
    kind = AccessKind.WRITE


class MentionShape:
    kind = AccessKind.MENTION

    def extract(self, block: ContentBlock, text: str) -> list[FileRefMatch]:
        if block.type == BlockType.FILE_CONTENT and block.path:
            return [FileRefMatch(kind=self.kind, path=block.path, content=text, label="file_content")]
        return [
            FileRefMatch(
                kind=self.kind,
                path=m.group("path").strip(),
                content=m.group("body"),
                span=(m.start(), m.end()),
                label="file_content",
            )
            for m in _MENTION_RE.finditer(text)
        ]


class FileReferenceExtractor:
    """Runs every shape over a block; whole-block shapes win over inline mentions."""

    def __init__(self, config: DedupConfig | None = None) -> None:
        config = config or DedupConfig()
        self.whole_block_shapes = (ToolReadShape(config.read_tools), WriteShape(config.write_tools))
        self.mention_shape = MentionShape()

    def extract_all(self, block: ContentBlock, text: str | None = None) -> list[FileRefMatch]:
        text = block.text if text is None else text
        if block.type == BlockType.IMAGE:
            return []
        if not isinstance(text, str):
            logger.debug("Skipping block with non-text content: %r", type(text).__name__)
            return []
        for shape in self.whole_block_shapes:
            matches = shape.extract(block, text)
            if matches:
                return [m for m in matches if not is_superseded(m.content)]
        return [m for m in self.mention_shape.extract(block, text) if not is_superseded(m.content)]

    def extract_one(self, block: ContentBlock, text: str | None = None) -> FileRefMatch | None:
        matches = self.extract_all(block, text)
        return matches[0] if matches else None


_DEFAULT_EXTRACTOR = FileReferenceExtractor()


def extract_file_references(block: ContentBlock) -> list[FileRefMatch]:
    """Every file occurrence in *block*, using the default tool names."""
    return _DEFAULT_EXTRACTOR.extract_all(block)


def extract_file_reference(block: ContentBlock) -> FileRefMatch | None:
    """First file occurrence in *block*, or None."""
    return _DEFAULT_EXTRACTOR.extract_one(block)
