"""Regex patterns for discourse, phase, and content-shape detection.

Kept in a standalone module so the relevance filter, the compressor and the
structure validator agree on what counts as a question, a follow-up or a fix.
"""

DEFAULT_BACK_REFERENCE_PATTERNS: list[str] = [
    r"\bas (?:i |we |you )?(?:mentioned|said|noted|discussed|described|showed)\b",
    r"\b(?:mentioned|shown|discussed|described|noted) (?:above|earlier|before|previously)\b",
    r"\bthe (?:previous|earlier|above|last) (?:error|output|message|file|result|answer|step|change)\b",
    r"\blike (?:i|you) said\b",
    r"\bgoing back to\b",
    r"\bfrom (?:before|earlier)\b",
]

DEFAULT_FOLLOW_UP_PATTERNS: list[str] = [
    r"\bTODO\b",
    r"\bfollow[- ]up\b",
    r"\bnext step",
    r"\bcome back to\b",
    r"\blater,? (?:we|i)(?:'ll| will)\b",
    r"\bdon'?t forget\b",
    r"\bremember to\b",
    r"\bstill need(?:s)? to\b",
    r"\b(?:haven'?t|not yet) (?:fixed|resolved|done|finished)\b",
]

DEFAULT_PROBLEM_PATTERNS: list[str] = [
    r"\berror\b",
    r"\bexception\b",
    r"\btraceback\b",
    r"\bfail(?:s|ed|ing|ure)?\b",
    r"\bbug\b",
    r"\bbroken\b",
    r"\b(?:doesn'?t|does not|won'?t) (?:work|compile|run|start)\b",
    r"\bcrash(?:es|ed)?\b",
]

DEFAULT_FIX_PATTERNS: list[str] = [
    r"\bfix(?:ed|es|ing)?\b",
    r"\bpatch(?:ed)?\b",
    r"\b(?:changed|updated|replaced|renamed|removed|added)\b",
    r"\bapplied\b",
]

DEFAULT_VERIFY_PATTERNS: list[str] = [
    r"\b(?:tests?|build|it|everything) (?:now )?(?:pass(?:es|ing)?|succeeds?|works?|is green)\b",
    r"\ball (?:tests )?(?:green|passing)\b",
    r"\b(?:verified|confirmed)\b",
    r"\bno (?:more )?errors\b",
    r"\bresolved\b",
    r"\bthat (?:fixed|solved) it\b",
]

DEFAULT_DECISION_PATTERNS: list[str] = [
    r"\bdecid(?:e|ed|ing)\b",
    r"\bwe(?:'ll| will| should) (?:use|go with|keep|switch)\b",
    r"\brequirements?\b",
    r"\bplan\b",
    r"\barchitecture\b",
    r"\bapproach\b",
    r"\bmust\b",
    r"\bconstraint\b",
]

# Opening words of a reply that only makes sense next to what it answers.
REPLY_CUE_PATTERN = r"^\s*(?:yes|no|yeah|nope|sure|ok(?:ay)?|right|that|this|it|those|these|exactly|correct)\b"

QUESTION_PATTERN = r"\?\s*$"

ERROR_LINE_PATTERN = (
    r"(?i)\b(?:error|exception|fail(?:ed|ure)?|fatal|panic|denied|refused|"
    r"not found|timed? ?out|segmentation fault)\b"
)
