from __future__ import annotations

import re


HOST_MATCHES = "host_matches"
PATH_BEG = "path_beg"
PATH = "path"

_ARG = r"\(\s*`([^`]+)`\s*\)"

# Tried in order; the first full match wins.
RULE_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    (HOST_MATCHES, re.compile(r"Host" + _ARG)),
    (PATH_BEG, re.compile(r"PathPrefix" + _ARG)),
    (PATH, re.compile(r"Path" + _ARG)),
]

_INVALID_CHARS_RE = re.compile(r"[^a-zA-Z0-9\-_]")
_HYPHENS_RE = re.compile(r"-+")


class RuleParseError(ValueError):
    pass


def parse_rule(rule: str) -> tuple[str, str]:
    """Turn a routing rule into an HAProxy ACL ``(expression, value)`` pair.

    Supported forms, one call per rule:
      Host(`example.com`)    -> ("host_matches", "example.com")
      PathPrefix(`/api`)     -> ("path_beg", "/api")
      Path(`/login`)         -> ("path", "/login")

    Combined rules such as ``Host(`a`) && Path(`/b`)`` are rejected.
    """
    text = (rule or "").strip()
    for expression, pattern in RULE_PATTERNS:
        m = pattern.fullmatch(text)
        if m:
            return expression, m.group(1)
    raise RuleParseError(f"unsupported rule format: {rule}")


def sanitize_name(name: str) -> str:
    sanitized = _INVALID_CHARS_RE.sub("-", name)
    sanitized = _HYPHENS_RE.sub("-", sanitized)
    return sanitized.strip("-")


def name_from_rule(rule: str) -> str:
    """Slug used for generated frontend and ACL names."""
    try:
        _, value = parse_rule(rule)
    except RuleParseError:
        return sanitize_name(rule)
    return sanitize_name(value.replace("/", "-"))
