"""Technical artifact scrubber for user-visible strings."""

import re
from typing import Optional

# (rule name, pattern); checked in order, first hit wins
ARTIFACT_RULES = [
    ("json", re.compile(r"\{\s*\"[^\"]*\"\s*:")),
    ("debug_marker", re.compile(r"\[(?:DEBUG|ERROR|LOG|INFO|WARN|TRACE)\]")),
    ("stack_trace", re.compile(r"\bat \b.*\.js:")),
    ("file_path", re.compile(r"src/|node_modules/|\.(?:js|ts|ini|json|md)\b")),
    ("technical_token", re.compile(r"\b(?:undefined|null|NaN|TypeError|ReferenceError|SyntaxError)\b")),
    ("object_string", re.compile(r"\[object Object\]")),
    ("sql", re.compile(r"\b(?:SELECT|INSERT|UPDATE|DELETE)\s+\w")),
    ("template_literal", re.compile(r"\$\{[^}]*\}")),
    ("placeholder", re.compile(r"\{[^{}]*\}")),
    ("env_placeholder", re.compile(r"%[A-Z][A-Z0-9_]*%")),
    ("api_path", re.compile(r"/api/|/v\d+/")),
    ("local_address", re.compile(r"localhost:\d+|127\.0\.0\.1")),
    ("config_reference", re.compile(r"\b[A-Z][A-Z0-9_]*[A-Z0-9]=|\bconfig\.|process\.env\.")),
]


def find_artifact(text: str) -> Optional[str]:
    """Return the name of the first artifact rule the text breaks, or None."""
    for name, pattern in ARTIFACT_RULES:
        if pattern.search(text):
            return name
    return None


def is_clean(text: str) -> bool:
    """True if the text is safe to show or speak."""
    return find_artifact(text) is None
