"""Rich document -> Markdown serialization.

Produces the Markdown that is sent to language models as context and used for
token estimates. The writer mirrors the block/delimiter bookkeeping of the
editor's Markdown serializer so output is stable across round trips:

- blocks are separated by a blank line, tight list items by a single newline
- nested containers (blockquote, list items) prefix every line with their delimiter
- bold/italic/strike are "mixable" and expel enclosing whitespace out of the markers
- inline code is written verbatim (no escaping inside backticks)

Conversion never raises to callers: failures are logged and replaced with
``CONVERSION_ERROR_SENTINEL`` (see :func:`convert_document` for a result type
that makes the degradation explicit).
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from Folio.schemas.document import DocNode, Mark, MarkType, NodeType, parse_document

logger = logging.getLogger(__name__)

CONVERSION_ERROR_SENTINEL = "Error during conversion."

_ESCAPE_RE = re.compile(r"[`*\\~\[\]_]")
_WORD_CHAR_RE = re.compile(r"[A-Za-z0-9_]")
_LINK_BANG_RE = re.compile(r"(^|[^\\])!$")


@dataclass(frozen=True)
class ConversionResult:
    text: str
    degraded: bool = False
    error: Optional[str] = None


@dataclass(frozen=True)
class _MarkSpec:
    open: Union[str, Callable[..., str]]
    close: Union[str, Callable[..., str]]
    mixable: bool = False
    expel_enclosing_whitespace: bool = False
    escape: bool = True


def _link_close(writer: "_MarkdownWriter", mark: Mark) -> str:
    attrs = mark.attrs or {}
    href = writer.esc(str(attrs.get("href", "")))
    title = f' "{writer.esc(str(attrs["title"]))}"' if attrs.get("title") else ""
    return f"]({href}{title})"


_MARK_SPECS: dict[MarkType, _MarkSpec] = {
    MarkType.BOLD: _MarkSpec("**", "**", mixable=True, expel_enclosing_whitespace=True),
    MarkType.ITALIC: _MarkSpec("*", "*", mixable=True, expel_enclosing_whitespace=True),
    MarkType.STRIKE: _MarkSpec("~~", "~~", mixable=True, expel_enclosing_whitespace=True),
    MarkType.CODE: _MarkSpec("`", "`", escape=False),
    MarkType.LINK: _MarkSpec("[", _link_close),
}


class _MarkdownWriter:
    def __init__(self, tight_lists: bool = True):
        self.out = ""
        self.delim = ""
        self.closed: Optional[DocNode] = None
        self.in_tight_list = False
        self.at_block_start = False
        self.tight_lists = tight_lists

    # ----- low level output -------------------------------------------------
    def at_blank(self) -> bool:
        return self.out == "" or self.out.endswith("\n")

    def ensure_new_line(self) -> None:
        if not self.at_blank():
            self.out += "\n"

    def flush_close(self, size: int = 2) -> None:
        if self.closed is None:
            return
        if not self.at_blank():
            self.out += "\n"
        if size > 1:
            delim_min = self.delim.rstrip()
            for _ in range(1, size):
                self.out += delim_min + "\n"
        self.closed = None

    def write(self, content: Optional[str] = None) -> None:
        self.flush_close()
        if self.delim and self.at_blank():
            self.out += self.delim
        if content:
            self.out += content

    def close_block(self, node: DocNode) -> None:
        self.closed = node

    def wrap_block(self, delim: str, first_delim: Optional[str], node: DocNode, render: Callable[[], None]) -> None:
        old = self.delim
        self.write(first_delim if first_delim is not None else delim)
        self.delim += delim
        render()
        self.delim = old
        self.close_block(node)

    def text(self, text: str, escape: bool = True) -> None:
        lines = text.split("\n")
        for i, line in enumerate(lines):
            self.write()
            # A literal "!" right before a link opener would turn it into an image
            if not escape and line[:1] == "[" and _LINK_BANG_RE.search(self.out):
                self.out = self.out[:-1] + "\\!"
            self.out += self.esc(line, self.at_block_start) if escape else line
            if i != len(lines) - 1:
                self.out += "\n"

    def esc(self, value: str, start_of_line: bool = False) -> str:
        def _escape(match: re.Match) -> str:
            char, i = match.group(0), match.start()
            if (
                char == "_"
                and 0 < i < len(value) - 1
                and _WORD_CHAR_RE.match(value[i - 1])
                and _WORD_CHAR_RE.match(value[i + 1])
            ):
                return char
            return "\\" + char

        escaped = _ESCAPE_RE.sub(_escape, value)
        if start_of_line:
            escaped = re.sub(r"^(\+ |[\-*>])", r"\\\g<1>", escaped, count=1)
            escaped = re.sub(r"^(\s*)(#{1,6})(\s|$)", r"\g<1>\\\g<2>\g<3>", escaped, count=1)
            escaped = re.sub(r"^(\s*\d+)\.\s", r"\g<1>\\. ", escaped, count=1)
        return escaped

    # ----- traversal --------------------------------------------------------
    def render(self, node: DocNode, parent: DocNode, index: int) -> None:
        handler = _NODE_RENDERERS.get(node.type)
        if handler is None:
            raise ValueError(f"no Markdown serializer for node type '{node.type.value}'")
        handler(self, node, parent, index)

    def render_content(self, parent: DocNode) -> None:
        for index, child in enumerate(parent.children):
            self.render(child, parent, index)

    def render_list(self, node: DocNode, delim: str, first_delim: Callable[[int], str]) -> None:
        if self.closed is not None and self.closed.type is node.type:
            self.flush_close(3)
        elif self.in_tight_list:
            self.flush_close(1)

        tight = node.attr("tight")
        is_tight = self.tight_lists if tight is None else bool(tight)
        prev_tight = self.in_tight_list
        self.in_tight_list = is_tight
        for index, child in enumerate(node.children):
            if index and is_tight:
                self.flush_close(1)
            self.wrap_block(delim, first_delim(index), node, lambda: self.render(child, node, index))
        self.in_tight_list = prev_tight

    def mark_string(self, mark: Mark, opening: bool) -> str:
        spec = _MARK_SPECS[mark.type]
        value = spec.open if opening else spec.close
        return value if isinstance(value, str) else value(self, mark)

    def render_inline(self, parent: DocNode, from_block_start: bool = True) -> None:
        self.at_block_start = from_block_start
        children = parent.children
        active: list[Mark] = []
        trailing = ""

        def progress(node: Optional[DocNode], index: int) -> None:
            nonlocal trailing
            marks = list(node.marks or []) if node is not None else []
            leading, trailing = trailing, ""

            # Whitespace just inside an opening mixable mark is moved in front of it
            if node is not None and node.type is NodeType.TEXT and any(
                _MARK_SPECS[m.type].expel_enclosing_whitespace and m not in active for m in marks
            ):
                lead, rest = re.match(r"^(\s*)(.*)$", node.text, re.DOTALL).groups()
                if lead:
                    leading += lead
                    node = node.model_copy(update={"text": rest}) if rest else None
                    if node is None:
                        marks = list(active)

            # ... and whitespace just inside a closing one is moved after it
            if node is not None and node.type is NodeType.TEXT and any(
                _MARK_SPECS[m.type].expel_enclosing_whitespace
                and (index == len(children) - 1 or m not in (children[index + 1].marks or []))
                for m in marks
            ):
                rest, trail = re.match(r"^(.*?)(\s*)$", node.text, re.DOTALL).groups()
                if trail:
                    trailing = trail
                    node = node.model_copy(update={"text": rest}) if rest else None
                    if node is None:
                        marks = list(active)

            inner = marks[-1] if marks else None
            no_escape = inner is not None and not _MARK_SPECS[inner.type].escape
            length = len(marks) - (1 if no_escape else 0)

            # Reorder mixable marks so the ones already open keep their nesting
            for i in range(length):
                mark = marks[i]
                if not _MARK_SPECS[mark.type].mixable:
                    break
                for j, other in enumerate(active):
                    if not _MARK_SPECS[other.type].mixable:
                        break
                    if mark == other:
                        if i > j:
                            marks = marks[:j] + [mark] + marks[j:i] + marks[i + 1:length]
                        elif j > i:
                            marks = marks[:i] + marks[i + 1:j] + [mark] + marks[j:length]
                        break

            keep = 0
            while keep < min(len(active), length) and marks[keep] == active[keep]:
                keep += 1
            while keep < len(active):
                self.text(self.mark_string(active.pop(), False), False)

            if leading:
                self.text(leading)

            if node is not None:
                while len(active) < length:
                    add = marks[len(active)]
                    active.append(add)
                    self.text(self.mark_string(add, True), False)
                    self.at_block_start = False
                if no_escape and node.type is NodeType.TEXT:
                    self.text(self.mark_string(inner, True) + node.text + self.mark_string(inner, False), False)
                else:
                    self.render(node, parent, index)
                self.at_block_start = False

        for index, child in enumerate(children):
            progress(child, index)
        progress(None, len(children))
        self.at_block_start = False


# ----- node renderers -------------------------------------------------------
def _blockquote(writer: _MarkdownWriter, node: DocNode, parent: DocNode, index: int) -> None:
    writer.wrap_block("> ", None, node, lambda: writer.render_content(node))


def _code_block(writer: _MarkdownWriter, node: DocNode, parent: DocNode, index: int) -> None:
    writer.write("```" + str(node.attr("params", "")) + "\n")
    writer.text(node.text_content, False)
    writer.ensure_new_line()
    writer.write("```")
    writer.close_block(node)


def _heading(writer: _MarkdownWriter, node: DocNode, parent: DocNode, index: int) -> None:
    writer.write("#" * int(node.attr("level", 1)) + " ")
    writer.render_inline(node)
    writer.close_block(node)


def _horizontal_rule(writer: _MarkdownWriter, node: DocNode, parent: DocNode, index: int) -> None:
    writer.write(node.attr("markup", "---"))
    writer.close_block(node)


def _bullet_list(writer: _MarkdownWriter, node: DocNode, parent: DocNode, index: int) -> None:
    bullet = node.attr("bullet", "*")
    writer.render_list(node, "  ", lambda _: bullet + " ")


def _ordered_list(writer: _MarkdownWriter, node: DocNode, parent: DocNode, index: int) -> None:
    start = node.attr("order") or 1
    max_width = len(str(start + len(node.children) - 1))
    space = " " * (max_width + 2)

    def _number(i: int) -> str:
        number = str(start + i)
        return " " * (max_width - len(number)) + number + ". "

    writer.render_list(node, space, _number)


def _list_item(writer: _MarkdownWriter, node: DocNode, parent: DocNode, index: int) -> None:
    writer.render_content(node)


def _paragraph(writer: _MarkdownWriter, node: DocNode, parent: DocNode, index: int) -> None:
    writer.render_inline(node)
    writer.close_block(node)


def _text(writer: _MarkdownWriter, node: DocNode, parent: DocNode, index: int) -> None:
    writer.text(node.text or "")


def _hard_break(writer: _MarkdownWriter, node: DocNode, parent: DocNode, index: int) -> None:
    # Trailing breaks at the end of a block are dropped
    for sibling in parent.children[index + 1:]:
        if sibling.type is not node.type:
            writer.write("\\\n")
            return


_NODE_RENDERERS: dict[NodeType, Callable[[_MarkdownWriter, DocNode, DocNode, int], None]] = {
    NodeType.BLOCKQUOTE: _blockquote,
    NodeType.CODE_BLOCK: _code_block,
    NodeType.HEADING: _heading,
    NodeType.HORIZONTAL_RULE: _horizontal_rule,
    NodeType.BULLET_LIST: _bullet_list,
    NodeType.ORDERED_LIST: _ordered_list,
    NodeType.LIST_ITEM: _list_item,
    NodeType.PARAGRAPH: _paragraph,
    NodeType.TEXT: _text,
    NodeType.HARD_BREAK: _hard_break,
}


# Serializes a validated document; raises on unsupported nodes
def serialize_document(doc: DocNode, tight_lists: bool = True) -> str:
    writer = _MarkdownWriter(tight_lists=tight_lists)
    writer.render_content(doc)
    return writer.out


def _has_content(content: Any) -> bool:
    if isinstance(content, DocNode):
        return bool(content.content)
    if isinstance(content, dict):
        return bool(content.get("content"))
    return content is not None


# Converts stored/submitted content to Markdown, reporting degradation instead of raising
def convert_document(content: Any) -> ConversionResult:
    if not _has_content(content):
        return ConversionResult(text="")
    try:
        doc = parse_document(content)
        return ConversionResult(text=serialize_document(doc))
    except Exception as e:
        logger.exception("markdown.serialize.error")
        return ConversionResult(text=CONVERSION_ERROR_SENTINEL, degraded=True, error=str(e))


def document_to_markdown(content: Any) -> str:
    return convert_document(content).text
