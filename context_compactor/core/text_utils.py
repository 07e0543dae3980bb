"""Shared lexical helpers: term vectors, cosine similarity, identifiers."""

from __future__ import annotations

import re
from collections import Counter

_WORD_RE = re.compile(r"[a-z_][a-z0-9_]{2,}")
_PATH_RE = re.compile(r"(?<![\w/.-])((?:[\w.-]+/)*[\w-][\w.-]*\.[A-Za-z0-9]{1,8})(?![\w/])")
_IDENTIFIER_RE = re.compile(
    r"`([^`\n]{2,80})`"                              # backticked spans
    r"|\b([A-Za-z_][A-Za-z0-9_]*\(\))"               # foo()
    r"|\b([A-Z][a-zA-Z0-9]*(?:Error|Exception))\b"   # TypeError
)
_SENTENCE_END_RE = re.compile(r"(?<=[.!?])\s")

KNOWN_EXTENSIONS = frozenset({
    "py", "js", "jsx", "ts", "tsx", "java", "go", "rs", "rb", "php", "c", "h",
    "cpp", "hpp", "cs", "swift", "kt", "scala", "lua", "sh", "sql", "md", "txt",
    "json", "yaml", "yml", "toml", "ini", "cfg", "html", "css", "scss", "vue",
    "xml", "csv", "lock", "log", "env",
})

STOPWORDS = frozenset({
    "the", "and", "for", "that", "this", "with", "you", "are", "was", "but",
    "not", "have", "has", "had", "from", "they", "will", "would", "can", "could",
    "should", "there", "their", "what", "when", "which", "into", "then", "than",
    "also", "just", "about", "some", "all", "any", "its", "our", "your", "let",
    "now", "out", "use", "using", "get", "got", "one", "see", "like", "here",
})


def term_vector(text: str) -> Counter:
    """Lower-cased term frequencies, stopwords removed."""
    return Counter(w for w in _WORD_RE.findall(text.lower()) if w not in STOPWORDS)


def cosine_similarity(a: Counter, b: Counter) -> float:
    """Cosine similarity between two sparse term vectors."""
    if not a or not b:
        return 0.0
    if len(a) > len(b):
        a, b = b, a
    dot = sum(count * b.get(term, 0) for term, count in a.items())
    norm_a = sum(c * c for c in a.values()) ** 0.5
    norm_b = sum(c * c for c in b.values()) ** 0.5
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def extract_paths(text: str) -> set[str]:
    """File-path-looking tokens (``src/app.py``, ``README.md``).

    Tokens without a directory part only count when their extension is a
    common source/document extension, so ``e.g`` or ``self.name`` are skipped.
    """
    paths = set()
    for match in _PATH_RE.finditer(text):
        candidate = match.group(1).strip(".")
        if not candidate or re.fullmatch(r"[\d.]+", candidate):
            continue
        ext = candidate.rsplit(".", 1)[-1].lower()
        if "/" in candidate or ext in KNOWN_EXTENSIONS:
            paths.add(candidate)
    return paths


def extract_identifiers(text: str) -> set[str]:
    """Identifiers a later message could point back at: code spans, calls, error types, paths."""
    found: set[str] = set()
    for m in _IDENTIFIER_RE.finditer(text):
        token = next(g for g in m.groups() if g)
        found.add(token.strip())
    found.update(extract_paths(text))
    return found


def first_sentence(text: str, limit: int = 100) -> str:
    """First sentence of the first non-empty line, cut at *limit* characters."""
    for line in text.splitlines():
        line = line.strip()
        if line:
            sentence = _SENTENCE_END_RE.split(line, 1)[0]
            if len(sentence) > limit:
                return sentence[: limit - 3].rstrip() + "..."
            return sentence
    return ""


def compile_patterns(patterns: list[str], flags: int = re.IGNORECASE) -> list[re.Pattern]:
    return [re.compile(p, flags) for p in patterns]


def matches_any(patterns: list[re.Pattern], text: str) -> bool:
    return any(p.search(text) for p in patterns)


def count_matches(patterns: list[re.Pattern], text: str) -> int:
    return sum(len(p.findall(text)) for p in patterns)
