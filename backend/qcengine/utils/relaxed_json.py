"""Lenient JSON reader for table definitions pasted by users.

Definitions are often copied out of chat tools or documents and arrive wrapped
in code fences or parentheses, with markdown escapes, typographic quotes,
trailing commas or unquoted keys.  The text is cleaned up and then parsed with
the strict :mod:`json` decoder.
"""

import json
import re

_FENCE = re.compile(r"^```[a-zA-Z]*\n?|```$")
_MARKDOWN_ESCAPE = re.compile(r"\\([\[\]_])")
_TRAILING_COMMA = re.compile(r",\s*([\]}])")
_BARE_KEY = re.compile(r"([\[,{\s])([a-zA-Z_][a-zA-Z0-9_\-]*)\s*:")
_QUOTES = {"\u201c": '"', "\u201d": '"', "\u2018": "'", "\u2019": "'"}
# double-quoted JSON strings, escapes included
_STRING = re.compile(r'("(?:[^"\\]|\\.)*")')


def clean_relaxed_json(text: str) -> str:
    s = text.strip()
    for fancy, plain in _QUOTES.items():
        s = s.replace(fancy, plain)

    s = _FENCE.sub("", s).strip()

    # Remove wrapping parentheses e.g. ( { ... } )
    if s.startswith("(") and s.endswith(")"):
        s = s[1:-1].strip()

    s = _MARKDOWN_ESCAPE.sub(r"\1", s)
    # split() keeps the strings at odd indexes; only the text between them is rewritten
    parts = _STRING.split(s)
    for i in range(0, len(parts), 2):
        part = _TRAILING_COMMA.sub(r"\1", parts[i])
        # best-effort: quote simple identifier keys
        parts[i] = _BARE_KEY.sub(lambda m: f'{m.group(1)}"{m.group(2)}":', part)
    return "".join(parts)


def parse_relaxed_json(text):
    """Parse ``text``; dicts and lists pass through untouched.

    Raises ValueError when the cleaned text is still not valid JSON.
    """
    if not isinstance(text, str):
        return text
    if not text.strip():
        raise ValueError("Empty table definition")
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    cleaned = clean_relaxed_json(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid table definition JSON: {exc.msg} (line {exc.lineno}, column {exc.colno})") from exc
