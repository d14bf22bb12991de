"""
Markdown cleanup passes.

Normalizes whitespace, typography and list/emphasis markers so stored
references stay compact. All functions are pure text transforms.
"""

import re

_BASIC_RULES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"([^\n])\n(#{1,6} )"), r"\1\n\n\2"),
    (re.compile(r"(#{1,6} .+)\n([^#\n])"), r"\1\n\n\2"),
    (re.compile(r"([^\n])\n([-*+] |\d+\. )"), r"\1\n\n\2"),
    (re.compile(r"(\*\*|__)[ \t]*([^*_\n]+?)[ \t]*\1"), r"\1\2\1"),
    (re.compile(r"([^\n])\n```"), r"\1\n\n```"),
    (re.compile(r"```\n([^`])"), r"```\n\n\1"),
    (re.compile(r"<!--[\s\S]*?-->"), " "),
    (re.compile(r" {2,}"), " "),
]

_ADVANCED_RULES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\[([^\]]+)\]\(\)"), r"\1"),
    (re.compile(r"<[^>]+>"), ""),
    (re.compile(r"\*\*\*\*"), ""),
    (re.compile(r"(?<!\*)\*\*(?!\*)"), ""),
    (re.compile(r"[\u200b-\u200d\ufeff]"), ""),
    (re.compile(r"[\u201c\u201d]"), '"'),
    (re.compile(r"[\u2018\u2019]"), "'"),
    (re.compile(r"[\u2013\u2014]"), "-"),
]

# Code, link targets and bare URLs are left alone by underscore rewrites
_PROTECTED_SPAN = re.compile(r"```[\s\S]*?```|`[^`\n]+`|\]\([^)\n]*\)|https?://[^\s)>\]]+")
_DOUBLE_UNDERSCORE = re.compile(r"__")
_UNDERSCORE_EMPHASIS = re.compile(r"(?<!\w)_(?=\S)([^_\n]+?)(?<=\S)_(?!\w)")

_NON_FENCE_LINE = re.compile(r"^(?!```)[^\n]*$", re.MULTILINE)
_MULTI_SPACE = re.compile(r" {2,}")

_FINAL_RULES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"^(\s*)[*+] ", re.MULTILINE), r"\1- "),
    (re.compile(r"^~~~(\w*)\n", re.MULTILINE), r"```\1\n"),
    (re.compile(r"^~~~$", re.MULTILINE), "```"),
    (re.compile(r"\n{3,}"), "\n\n"),
]


def _sub_outside_protected(pattern: re.Pattern[str], replacement: str, text: str) -> str:
    """Apply pattern.sub to the text between protected spans."""
    parts = []
    last = 0
    for match in _PROTECTED_SPAN.finditer(text):
        parts.append(pattern.sub(replacement, text[last : match.start()]))
        parts.append(match.group(0))
        last = match.end()
    parts.append(pattern.sub(replacement, text[last:]))
    return "".join(parts)


def clean_markdown(markdown: str) -> str:
    """Normalize line endings, blank lines and block spacing."""
    if not markdown.strip():
        return markdown

    cleaned = markdown.replace("\r\n", "\n")
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
    cleaned = re.sub(r"[ \t]+$", "", cleaned, flags=re.MULTILINE)
    cleaned = cleaned.strip()

    for pattern, replacement in _BASIC_RULES:
        cleaned = pattern.sub(replacement, cleaned)

    return cleaned


def advanced_clean(markdown: str) -> str:
    """Drop empty links, stray tags, bold markers and typographic quotes."""
    cleaned = markdown
    for pattern, replacement in _ADVANCED_RULES:
        cleaned = pattern.sub(replacement, cleaned)
    cleaned = _sub_outside_protected(_DOUBLE_UNDERSCORE, "", cleaned)

    return _NON_FENCE_LINE.sub(lambda m: _MULTI_SPACE.sub(" ", m.group(0)), cleaned)


def final_cleanup(markdown: str) -> str:
    """Unify list and emphasis markers and end with a single newline."""
    if not markdown.strip():
        return markdown

    cleaned = markdown
    for pattern, replacement in _FINAL_RULES:
        cleaned = pattern.sub(replacement, cleaned)
    cleaned = _sub_outside_protected(_UNDERSCORE_EMPHASIS, r"*\1*", cleaned)

    return f"{cleaned.strip()}\n"


def clean_markdown_complete(markdown: str) -> str:
    """Run all cleanup passes in order.

    Args:
        markdown: Raw converted markdown.

    Returns:
        Cleaned markdown ending with a newline, or the input unchanged if blank.
    """
    if not markdown.strip():
        return markdown

    cleaned = clean_markdown(markdown)
    cleaned = advanced_clean(cleaned)
    return final_cleanup(cleaned)
