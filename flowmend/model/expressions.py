# flowmend/model/expressions.py
"""
n8n expression-template syntax.

Canonical form: the whole parameter value is prefixed with "=" and property
access inside templates uses double quotes, e.g.  ={{ $json["subject"] }}
"""
import re

# Parameters that hold program text rather than templates.
CODE_KEYS = frozenset({"jsCode", "functionCode", "pythonCode", "query"})

_SINGLE_QUOTED_ACCESS_RE = re.compile(r"""(\$json|\$node|\])\[\s*'([^'"\]]*)'\s*\]""")
_BARE_ACCESS_RE = re.compile(r"""(\$json|\$node)\[\s*([A-Za-z_]\w*)\s*\]""")


def is_template(text: str) -> bool:
    return "{{" in text and "}}" in text


def needs_prefix(text: str) -> bool:
    """A template that n8n would treat as a literal string because it lacks the leading '='."""
    return is_template(text) and not text.startswith("=")


def has_legacy_access(text: str) -> bool:
    return bool(_SINGLE_QUOTED_ACCESS_RE.search(text) or _BARE_ACCESS_RE.search(text))


def normalize_expression(text: str) -> str:
    """Rewrite one string value to canonical expression syntax; non-templates are returned unchanged."""
    if not (is_template(text) or text.startswith("=")):
        return text
    out = _BARE_ACCESS_RE.sub(r'\1["\2"]', text)
    prev = None
    while prev != out:
        prev = out
        out = _SINGLE_QUOTED_ACCESS_RE.sub(r'\1["\2"]', out)
    if needs_prefix(out):
        out = "=" + out
    return out
