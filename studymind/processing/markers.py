"""Inline reference markers embedded in chat messages.

Two kinds share one micro-format::

    @mention {uid: '0b4c...', name: 'Bio Notes', type: 'NOTE'}   user-authored
    @created {uid: '0b4c...', name: 'Biology', type: 'FOLDER'}   written by the assistant

Field values may be single-quoted, double-quoted or bare. This module is the
only place that knows the grammar; everything else works with ``Marker``.
"""

import re
from dataclasses import dataclass, field

KIND_MENTION = "mention"
KIND_CREATED = "created"

_MARKER_RE = re.compile(r"@(mention|created)\s*\{([^{}]*)\}", re.IGNORECASE)
_FIELD_RE = re.compile(
    r"""(\w+)\s*:\s*(?:'([^']*)'|"([^"]*)"|([^,}]+))"""
)


@dataclass(frozen=True)
class Marker:
    kind: str
    uid: str
    fields: dict = field(default_factory=dict, compare=False, hash=False)
    raw: str = field(default="", compare=False, hash=False)

    @property
    def name(self) -> str:
        return self.fields.get("name", "")

    @property
    def type(self) -> str:
        return self.fields.get("type", "").upper()


def _parse_fields(body: str) -> dict:
    fields = {}
    for match in _FIELD_RE.finditer(body):
        key = match.group(1)
        value = next((g for g in match.group(2, 3, 4) if g is not None), "")
        fields[key] = value.strip()
    return fields


def parse_markers(text: str, kinds: tuple[str, ...] = (KIND_MENTION, KIND_CREATED)) -> list[Marker]:
    """Extract markers in order of appearance.

    Markers without a uid are ignored. The same marker text repeated within
    one message is returned once.
    """
    if not text:
        return []

    markers = []
    seen = set()
    for match in _MARKER_RE.finditer(text):
        kind = match.group(1).lower()
        if kind not in kinds:
            continue
        fields = _parse_fields(match.group(2))
        uid = fields.get("uid", "")
        if not uid:
            continue
        raw = match.group(0)
        if raw in seen:
            continue
        seen.add(raw)
        markers.append(Marker(kind=kind, uid=uid, fields=fields, raw=raw))
    return markers


def find_marker_strings(text: str) -> list[str]:
    """Return the literal marker substrings in order, duplicates kept once."""
    return [m.raw for m in parse_markers(text)]


_BRACE_SUBSTITUTES = str.maketrans("{}", "()")


def _quote(value: str) -> str:
    # A marker body cannot contain braces
    value = str(value).translate(_BRACE_SUBSTITUTES)
    if "'" in value and '"' not in value:
        return f'"{value}"'
    return "'" + value.replace("'", "’") + "'"


def format_marker(kind: str, uid, name: str, item_type: str) -> str:
    """Render a marker in the canonical single-quoted form."""
    return f"@{kind} {{uid: {_quote(str(uid))}, name: {_quote(name)}, type: {_quote(item_type)}}}"


def format_created_marker(uid, name: str, item_type: str) -> str:
    return format_marker(KIND_CREATED, uid, name, item_type)


def keep_markers(text: str, allowed) -> str:
    """Remove every marker whose literal text is not in ``allowed``."""
    if not text:
        return ""
    return _MARKER_RE.sub(lambda m: m.group(0) if m.group(0) in allowed else "", text)


def strip_markers(text: str) -> str:
    """Remove every marker, leaving only the prose a person reads."""
    if not text:
        return ""
    stripped = _MARKER_RE.sub("", text)
    stripped = re.sub(r"[ \t]+\n", "\n", stripped)
    stripped = re.sub(r"\n{3,}", "\n\n", stripped)
    return re.sub(r"[ \t]{2,}", " ", stripped).strip()
