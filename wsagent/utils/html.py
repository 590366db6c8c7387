"""Minimal HTML-to-text extraction."""

import html
import re

_SCRIPT_STYLE = re.compile(r"<(script|style|noscript)[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL)
_BOILERPLATE = re.compile(r"<(nav|header|footer|aside)[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL)
_TAG = re.compile(r"<[^>]+>")
_WHITESPACE = re.compile(r"\s+")
_TITLE = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)
_H1 = re.compile(r"<h1[^>]*>(.*?)</h1>", re.IGNORECASE | re.DOTALL)
_ARTICLE = re.compile(r"<(article|main)[^>]*>(.*?)</\1>", re.IGNORECASE | re.DOTALL)
_BODY = re.compile(r"<body[^>]*>(.*?)(?:</body>|\Z)", re.IGNORECASE | re.DOTALL)
_HEAD = re.compile(r"<head[^>]*>.*?</head>", re.IGNORECASE | re.DOTALL)
_META = re.compile(r"<meta\s[^>]*>", re.IGNORECASE)
_ATTRIBUTE = re.compile(r"""([a-zA-Z:_-]+)\s*=\s*(?:"([^"]*)"|'([^']*)')""")


def _clean(fragment: str) -> str:
    return _WHITESPACE.sub(" ", html.unescape(_TAG.sub(" ", fragment))).strip()


def meta_content(document: str, *keys: str) -> str:
    """Content of the first ``<meta>`` whose name or property matches one of ``keys``."""
    wanted = {key.lower() for key in keys}
    for tag in _META.findall(document):
        attributes = {name.lower(): double or single for name, double, single in _ATTRIBUTE.findall(tag)}
        key = (attributes.get("name") or attributes.get("property") or "").lower()
        if key in wanted and attributes.get("content"):
            return html.unescape(attributes["content"]).strip()
    return ""


def extract_title(document: str) -> str:
    for pattern in (_TITLE, _H1):
        match = pattern.search(document)
        if match and _clean(match.group(1)):
            return _clean(match.group(1))
    return meta_content(document, "og:title") or "Untitled"


def extract_text(document: str, limit: int | None = None) -> str:
    """Readable text of a page, preferring ``<article>``/``<main>`` over the whole body."""
    stripped = _BOILERPLATE.sub(" ", _SCRIPT_STYLE.sub(" ", document))
    article = _ARTICLE.search(stripped)
    body = _BODY.search(stripped)
    if article:
        text = _clean(article.group(2))
    elif body:
        text = _clean(body.group(1))
    else:
        # Fragment without a body element
        text = _clean(_HEAD.sub(" ", stripped))
    return text[:limit] if limit is not None else text
