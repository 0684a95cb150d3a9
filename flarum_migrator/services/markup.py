"""Transcoding of Flarum's stored post XML into Discourse markdown.

Flarum keeps post bodies as s9e/TextFormatter XML: BBCode and markdown
tags wrapped in uppercase elements, with the original markers kept in
``<s>`` (start) and ``<e>`` (end) children. The rules below rewrite the
constructs Discourse can represent and strip the remaining tags.

Rule order matters: later rules expect the structure the earlier ones
leave behind (the layout strip exposes ``[center]`` markers, the link
rules must see ``<URL>`` elements before the final strip removes them).
"""

import html
import re
from typing import Callable, List, Tuple

YOUTUBE_WATCH_URL = "https://www.youtube.com/watch?v={video_id}"

# Tags this module emits itself; the final strip leaves them alone.
TARGET_TAGS = ("ul", "li")

ESCAPED_NEWLINE = re.compile(r"\\n")
INLINE_CODE = re.compile(r"<C><s>`</s>(.*?)<e>`</e></C>", re.S)
LIST_BLOCK = re.compile(r"<LIST(?:\s[^>]*)?>(.*?)</LIST>", re.S)
LIST_ITEM = re.compile(r"<LI>(?:<s>[^<]*</s>)?\s*(.*?)\s*</LI>", re.S)
LAYOUT_TAG = re.compile(r"</?(?:SIZE|COLOR|CENTER|RIGHT|LEFT)(?:\s[^>]*)?>")
URL_WITH_TEXT = re.compile(
    r'<URL url="([^"]*)"[^>]*><s>\[</s>(.*?)<e>\]\(.*?\)</e></URL>', re.S
)
URL_BARE = re.compile(r'<URL url="([^"]*)"[^>]*>(.*?)</URL>', re.S)
IMAGE = re.compile(r'<IMG\b[^>]*?\bsrc="([^"]*)"[^>]*?(?:/>|>.*?</IMG>)', re.S)
YOUTUBE = re.compile(r"\[youtube\]\s*(.*?)\s*\[[\\/]youtube\]", re.S | re.I)
BLOCK_MARKERS = ("center", "right", "left", "quote")
ANY_TAG = re.compile(
    r"<(?!/?(?:%s)>)/?[A-Za-z][^>]*>" % "|".join(TARGET_TAGS)
)


def _block_pattern(name: str) -> "re.Pattern[str]":
    # Flarum wraps the markers as <s>[name]</s> ... <e>[/name]</e>
    return re.compile(
        r"\[%s\](?:</s>)?\s*(.*?)\s*(?:<e>)?\[[\\/]%s\]" % (name, name), re.S | re.I
    )


BLOCKS = [(name, _block_pattern(name)) for name in BLOCK_MARKERS]


def _attr(value: str) -> str:
    """Decode an XML attribute value (``&amp;`` and friends)."""
    return html.unescape(value)


def _list_block(match: re.Match) -> str:
    items = LIST_ITEM.findall(match.group(1))
    return "<ul>" + "".join(f"<li>{item}</li>" for item in items) + "</ul>"


def _link_with_text(match: re.Match) -> str:
    return f"[{match.group(2)}]({_attr(match.group(1))})"


def _bare_link(match: re.Match) -> str:
    url = _attr(match.group(1))
    return f"[{url}]({url})"


def _image(match: re.Match) -> str:
    return f"![image]({_attr(match.group(1))})"


def _youtube(match: re.Match) -> str:
    url = YOUTUBE_WATCH_URL.format(video_id=match.group(1))
    return f"[{url}]({url})"


def _normalize_blocks(text: str) -> str:
    for name, pattern in BLOCKS:
        text = pattern.sub(
            lambda m, name=name: f"[{name}]\n{m.group(1).strip()}\n[/{name}]", text
        )
    return text


class MarkupTranscoder:
    """
    Ordered rule pipeline turning Flarum XML into Discourse markdown.

    Every rule is a total substitution over the accumulated string; a
    rule that matches nothing leaves it unchanged.
    """

    def __init__(self):
        self._rules: List[Tuple[str, Callable[[str], str]]] = [
            ("escaped_newlines", lambda s: ESCAPED_NEWLINE.sub("", s)),
            ("inline_code", lambda s: INLINE_CODE.sub(r"`\1`", s)),
            ("lists", lambda s: LIST_BLOCK.sub(_list_block, s)),
            ("layout_tags", lambda s: LAYOUT_TAG.sub("", s)),
            ("links_with_text", lambda s: URL_WITH_TEXT.sub(_link_with_text, s)),
            ("bare_links", lambda s: URL_BARE.sub(_bare_link, s)),
            ("images", lambda s: IMAGE.sub(_image, s)),
            ("youtube", lambda s: YOUTUBE.sub(_youtube, s)),
            ("block_markers", _normalize_blocks),
            ("strip_tags", lambda s: ANY_TAG.sub("", s)),
        ]

    @property
    def rule_names(self) -> List[str]:
        return [name for name, _ in self._rules]

    def transcode(self, raw: str) -> str:
        """Apply every rule, in order, to ``raw``."""
        if not raw:
            return ""

        text = raw
        for _, rule in self._rules:
            text = rule(text)
        return text


_default = MarkupTranscoder()


def transcode(raw: str) -> str:
    """Transcode a Flarum post body with the default rule set."""
    return _default.transcode(raw)
