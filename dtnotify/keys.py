"""Build key derivation."""

from __future__ import annotations

from pathlib import Path

from .config import EffectiveConfig
from .macros import MacroExpander, try_expand
from .models import BuildSnapshot

_SIMPLE_ESCAPES = {
    "'": "\\'",
    '"': '\\"',
    "\\": "\\\\",
    "/": "\\/",
    "\b": "\\b",
    "\n": "\\n",
    "\t": "\\t",
    "\f": "\\f",
    "\r": "\\r",
}


def _unicode_escape(ch: str) -> str:
    code = ord(ch)
    if code > 0xFFFF:
        # UTF-16 surrogate pair, as JavaScript sees it
        code -= 0x10000
        return f"\\u{0xD800 + (code >> 10):04X}\\u{0xDC00 + (code & 0x3FF):04X}"
    return f"\\u{code:04X}"


def escape_javascript(text: str) -> str:
    """Escape a string for embedding in a JavaScript/JSON string literal."""
    out = []
    for ch in text:
        if ch in _SIMPLE_ESCAPES:
            out.append(_SIMPLE_ESCAPES[ch])
        elif ord(ch) < 32 or ord(ch) > 0x7F:
            out.append(_unicode_escape(ch))
        else:
            out.append(ch)
    return "".join(out)


def default_build_key(build: BuildSnapshot, config: EffectiveConfig, root_url: str) -> str:
    """``<job>[-<number>]-<root url>``, unescaped."""
    key = build.job_name
    if config.include_build_number_in_key:
        key += f"-{build.number}"
    return f"{key}-{root_url}"


def build_key(
    build: BuildSnapshot,
    config: EffectiveConfig,
    root_url: str,
    expander: MacroExpander,
    workspace: Path | None = None,
) -> str:
    """Key identifying this build to the server, escaped for string embedding."""
    prefix = ""
    if config.prepend_parent_project_key and build.parent_job_name:
        prefix = f"{build.parent_job_name}-"

    template = config.project_key
    if template and template.strip():
        key = try_expand(expander, build, workspace, template).or_else(
            lambda: default_build_key(build, config, root_url),
            "Cannot expand build key from parameter. Processing with default build key",
        )
    else:
        key = default_build_key(build, config, root_url)

    return escape_javascript(prefix + key)
