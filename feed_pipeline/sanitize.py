"""
HTML sanitization and text helpers for feed item bodies.
"""

import math

from bs4 import BeautifulSoup, Comment

ALLOWED_TAGS = {
    "p", "br", "strong", "em", "u", "a", "ul", "ol", "li",
    "blockquote", "code", "pre", "h1", "h2", "h3", "h4", "h5", "h6",
}

# Only anchors keep attributes
ALLOWED_LINK_ATTRS = {"href", "title", "target", "rel"}

# Removed together with everything inside them
DROP_WITH_CONTENT = {"script", "style", "iframe", "object", "embed", "noscript", "template"}

WORDS_PER_MINUTE = 200


def sanitize_html(html: str | None) -> str:
    """
    Reduce HTML to an allow-list of inline/structural tags.

    Disallowed tags are unwrapped (their text survives); dangerous containers are
    removed outright. data-* attributes and javascript: links never survive.
    """
    if not html:
        return ""

    soup = BeautifulSoup(html, "html.parser")

    for tag in soup.find_all(DROP_WITH_CONTENT):
        tag.decompose()

    for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()

    for tag in soup.find_all(True):
        if tag.name not in ALLOWED_TAGS:
            tag.unwrap()
            continue

        if tag.name != "a":
            tag.attrs = {}
            continue

        kept = {}
        for name, value in tag.attrs.items():
            if name not in ALLOWED_LINK_ATTRS:
                continue
            if name == "href" and str(value).strip().lower().startswith(("javascript:", "vbscript:", "data:")):
                continue
            kept[name] = value
        tag.attrs = kept

    return str(soup).strip()


def extract_plain_text(html: str | None) -> str:
    """Strip all markup and collapse whitespace."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    return " ".join(soup.get_text(separator=" ").split())


def calculate_reading_time(text: str, words_per_minute: int = WORDS_PER_MINUTE) -> int:
    """Estimated reading time in whole minutes."""
    word_count = len(text.split())
    return math.ceil(word_count / words_per_minute)
