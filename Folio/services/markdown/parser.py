"""Markdown -> rich document conversion.

Markdown is rendered to HTML with markdown-it (CommonMark + strikethrough, raw
HTML disabled) and the HTML is then folded into a document tree by a streaming
``HTMLParser`` subclass, so no DOM is needed and it runs anywhere the server
runs. Whitespace is handled the way the editor imports HTML: runs collapse to
one space, leading space at the start of a block or after a hard break is
dropped, trailing space at the end of a block is dropped. Non-breaking space
at the very start or end of a block is dropped as well.
"""

import asyncio
import logging
import re
from html.parser import HTMLParser
from typing import Any, Optional

from markdown_it import MarkdownIt

from Folio.schemas.document import MARK_RANK, DocNode, MarkType, NodeType, empty_document

logger = logging.getLogger(__name__)

_markdown = MarkdownIt("commonmark", {"html": False}).enable("strikethrough")

_WHITESPACE_RE = re.compile(r"[ \t\r\n\f]+")
_EDGE_SPACE = " \xa0"

_BLOCK_TAGS: dict[str, NodeType] = {
    "p": NodeType.PARAGRAPH,
    "blockquote": NodeType.BLOCKQUOTE,
    "ul": NodeType.BULLET_LIST,
    "ol": NodeType.ORDERED_LIST,
    "li": NodeType.LIST_ITEM,
    "pre": NodeType.CODE_BLOCK,
    **{f"h{level}": NodeType.HEADING for level in range(1, 7)},
}

_MARK_TAGS: dict[str, MarkType] = {
    "strong": MarkType.BOLD,
    "b": MarkType.BOLD,
    "em": MarkType.ITALIC,
    "i": MarkType.ITALIC,
    "s": MarkType.STRIKE,
    "del": MarkType.STRIKE,
    "strike": MarkType.STRIKE,
    "code": MarkType.CODE,
    "a": MarkType.LINK,
}

_TEXTBLOCKS = {NodeType.PARAGRAPH, NodeType.HEADING}


class _Frame:
    __slots__ = ("type", "attrs", "content", "implicit")

    def __init__(self, node_type: NodeType, attrs: Optional[dict[str, Any]] = None, implicit: bool = False):
        self.type = node_type
        self.attrs = attrs
        self.content: list[dict[str, Any]] = []
        self.implicit = implicit

    def to_dict(self) -> dict[str, Any]:
        node: dict[str, Any] = {"type": self.type.value}
        if self.attrs:
            node["attrs"] = self.attrs
        if self.content:
            node["content"] = self.content
        return node


class _DocumentBuilder(HTMLParser):
    def __init__(self):
        super().__init__(convert_charrefs=True)
        self._stack: list[_Frame] = [_Frame(NodeType.DOC)]
        self._marks: list[tuple[str, dict[str, Any]]] = []
        self._code_text: Optional[list[str]] = None

    @property
    def _top(self) -> _Frame:
        return self._stack[-1]

    # ----- tags -------------------------------------------------------------
    def handle_starttag(self, tag: str, attrs: list[tuple[str, Optional[str]]]) -> None:
        attributes = dict(attrs)

        if self._code_text is not None:
            # Inside <pre>: only the <code class="language-*"> wrapper matters
            if tag == "code":
                language = _language_from_class(attributes.get("class"))
                if language:
                    self._top.attrs = {"language": language}
            return

        if tag in _BLOCK_TAGS:
            node_type = _BLOCK_TAGS[tag]
            self._close_implicit_paragraph()
            node_attrs: Optional[dict[str, Any]] = None
            if node_type is NodeType.HEADING:
                node_attrs = {"level": int(tag[1])}
            elif node_type is NodeType.ORDERED_LIST:
                node_attrs = {"order": _int_or_default(attributes.get("start"), 1)}
            elif node_type is NodeType.BULLET_LIST and attributes.get("data-bullet"):
                node_attrs = {"bullet": attributes["data-bullet"]}
            self._stack.append(_Frame(node_type, node_attrs))
            if node_type is NodeType.CODE_BLOCK:
                self._code_text = []
            return

        if tag == "hr":
            self._close_implicit_paragraph()
            self._top.content.append({"type": NodeType.HORIZONTAL_RULE.value})
            return

        if tag == "br":
            self._ensure_textblock().content.append({"type": NodeType.HARD_BREAK.value})
            return

        if tag in _MARK_TAGS:
            mark_type = _MARK_TAGS[tag]
            mark_attrs: dict[str, Any] = {}
            if mark_type is MarkType.LINK:
                mark_attrs = {"href": attributes.get("href") or ""}
                if attributes.get("title"):
                    mark_attrs["title"] = attributes["title"]
            self._marks.append((mark_type.value, mark_attrs))

    def handle_startendtag(self, tag: str, attrs: list[tuple[str, Optional[str]]]) -> None:
        self.handle_starttag(tag, attrs)
        if tag not in ("br", "hr"):
            self.handle_endtag(tag)

    def handle_endtag(self, tag: str) -> None:
        if self._code_text is not None:
            if tag == "pre":
                self._finish_code_block()
            return

        if tag in _BLOCK_TAGS:
            self._close_until(_BLOCK_TAGS[tag])
            return

        if tag in _MARK_TAGS:
            mark_type = _MARK_TAGS[tag].value
            for i in range(len(self._marks) - 1, -1, -1):
                if self._marks[i][0] == mark_type:
                    del self._marks[i]
                    break

    # ----- text -------------------------------------------------------------
    def handle_data(self, data: str) -> None:
        if self._code_text is not None:
            self._code_text.append(data)
            return

        text = _WHITESPACE_RE.sub(" ", data)
        if not text.strip() and self._top.type not in _TEXTBLOCKS:
            return

        block = self._ensure_textblock()
        previous = block.content[-1] if block.content else None
        if previous is None:
            # markdown-it strips non-breaking space at block edges on the next parse too
            text = text.lstrip(_EDGE_SPACE)
        elif text.startswith(" ") and (
            previous["type"] == NodeType.HARD_BREAK.value
            or (previous["type"] == NodeType.TEXT.value and previous["text"].endswith(" "))
        ):
            text = text[1:]
        if not text:
            return

        marks = self._current_marks()
        if previous is not None and previous["type"] == NodeType.TEXT.value and previous.get("marks") == marks:
            previous["text"] += text
            return
        node: dict[str, Any] = {"type": NodeType.TEXT.value, "text": text}
        if marks:
            node["marks"] = marks
        block.content.append(node)

    # ----- structure helpers ------------------------------------------------
    def _current_marks(self) -> Optional[list[dict[str, Any]]]:
        seen: dict[str, dict[str, Any]] = {}
        for mark_type, attrs in self._marks:
            # Innermost link wins; other marks are idempotent
            seen[mark_type] = {"type": mark_type, **({"attrs": attrs} if attrs else {})}
        if not seen:
            return None
        return sorted(seen.values(), key=lambda mark: MARK_RANK[MarkType(mark["type"])])

    def _ensure_textblock(self) -> _Frame:
        if self._top.type in _TEXTBLOCKS:
            return self._top
        frame = _Frame(NodeType.PARAGRAPH, implicit=True)
        self._stack.append(frame)
        return frame

    def _close_implicit_paragraph(self) -> None:
        if self._top.implicit:
            self._pop()

    def _close_until(self, node_type: NodeType) -> None:
        if not any(frame.type is node_type for frame in self._stack[1:]):
            return
        while len(self._stack) > 1:
            frame = self._pop()
            if frame.type is node_type and not frame.implicit:
                return

    def _pop(self) -> _Frame:
        frame = self._stack.pop()
        if frame.type in _TEXTBLOCKS and frame.content:
            last = frame.content[-1]
            if last["type"] == NodeType.TEXT.value:
                last["text"] = last["text"].rstrip(_EDGE_SPACE)
                if not last["text"]:
                    frame.content.pop()
        if frame.type in (NodeType.LIST_ITEM, NodeType.BLOCKQUOTE) and not frame.content:
            frame.content.append({"type": NodeType.PARAGRAPH.value})
        self._top.content.append(frame.to_dict())
        return frame

    def _finish_code_block(self) -> None:
        text = "".join(self._code_text or [])
        if text.endswith("\n"):
            text = text[:-1]
        self._code_text = None
        frame = self._stack.pop()
        if text:
            frame.content.append({"type": NodeType.TEXT.value, "text": text})
        self._top.content.append(frame.to_dict())

    def document(self) -> DocNode:
        self.close()
        if self._code_text is not None:
            self._finish_code_block()
        while len(self._stack) > 1:
            self._pop()
        root = self._stack[0]
        if not root.content:
            return empty_document()
        return DocNode.model_validate(root.to_dict())


def _language_from_class(value: Optional[str]) -> Optional[str]:
    for name in (value or "").split():
        if name.startswith("language-") and len(name) > len("language-"):
            return name[len("language-"):]
    return None


def _int_or_default(value: Optional[str], default: int) -> int:
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


def render_markdown_html(markdown: str) -> str:
    env: dict[str, Any] = {}
    tokens = _markdown.parse(markdown, env)
    for token in tokens:
        # Bullet character travels through the HTML as data-bullet
        if token.type == "bullet_list_open" and token.markup:
            token.attrSet("data-bullet", token.markup)
    return _markdown.renderer.render(tokens, _markdown.options, env)


def html_to_document(html: str) -> DocNode:
    builder = _DocumentBuilder()
    builder.feed(html)
    return builder.document()


def _fallback_document(markdown: str) -> DocNode:
    if not markdown:
        return empty_document()
    return DocNode(
        type=NodeType.DOC,
        content=[DocNode(type=NodeType.PARAGRAPH, content=[DocNode(type=NodeType.TEXT, text=markdown)])],
    )


# Never raises: a failed parse keeps the raw text in a single paragraph
def markdown_to_document(markdown: str) -> DocNode:
    try:
        return html_to_document(render_markdown_html(markdown or ""))
    except Exception:
        logger.exception("markdown.parse.error: chars=%d", len(markdown or ""))
        return _fallback_document(markdown or "")


async def markdown_to_document_async(markdown: str) -> DocNode:
    return await asyncio.to_thread(markdown_to_document, markdown)
