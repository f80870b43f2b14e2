"""Injection-safe rendering of match excerpts."""

import html

MARK_OPEN = "<mark>"
MARK_CLOSE = "</mark>"

_ESCAPED_OPEN = html.escape(MARK_OPEN)
_ESCAPED_CLOSE = html.escape(MARK_CLOSE)


def render_highlight(excerpt: str | None, fallback: str) -> str:
    """Render an excerpt as HTML with only the match markers left active.

    The whole excerpt, markers included, is escaped first; only the escaped
    marker sequences are then turned back into tags. Field content can
    therefore never contribute live markup.

    Args:
        excerpt: Text with MARK_OPEN/MARK_CLOSE around matched terms, or
            None when no field matched inside the excerpt window.
        fallback: Plain display name used when there is no excerpt.

    Returns:
        Safe HTML fragment.
    """
    if not excerpt or MARK_OPEN not in excerpt:
        return html.escape(fallback)

    escaped = html.escape(excerpt)
    return escaped.replace(_ESCAPED_OPEN, MARK_OPEN).replace(
        _ESCAPED_CLOSE, MARK_CLOSE
    )


def mark_substring(text: str, needle: str) -> str | None:
    """Wrap the first case-insensitive occurrence of needle in markers.

    Args:
        text: Field value.
        needle: Case-folded search text.

    Returns:
        Text with markers, the unmarked text when the match offsets cannot
        be mapped back, or None when needle does not occur.
    """
    folded = text.casefold()
    start = folded.find(needle)
    # casefold() can change length for some characters; offsets are only
    # trusted when it did not.
    if start < 0 or len(folded) != len(text):
        return None if start < 0 else text
    end = start + len(needle)
    return f"{text[:start]}{MARK_OPEN}{text[start:end]}{MARK_CLOSE}{text[end:]}"
