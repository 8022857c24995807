from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, model_validator


class NodeType(str, Enum):
    DOC = "doc"
    PARAGRAPH = "paragraph"
    HEADING = "heading"
    TEXT = "text"
    BLOCKQUOTE = "blockquote"
    BULLET_LIST = "bulletList"
    ORDERED_LIST = "orderedList"
    LIST_ITEM = "listItem"
    CODE_BLOCK = "codeBlock"
    HORIZONTAL_RULE = "horizontalRule"
    HARD_BREAK = "hardBreak"


class MarkType(str, Enum):
    LINK = "link"
    BOLD = "bold"
    ITALIC = "italic"
    STRIKE = "strike"
    CODE = "code"


# Canonical mark order on a text node; code stays innermost so its text is never escaped
MARK_RANK = {mark: rank for rank, mark in enumerate(MarkType)}

_LEAF_TYPES = {NodeType.TEXT, NodeType.HORIZONTAL_RULE, NodeType.HARD_BREAK}


# Inline formatting applied to a text node
class Mark(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    type: MarkType
    attrs: Optional[dict[str, Any]] = None

    @model_validator(mode="after")
    def _check_attrs(self) -> "Mark":
        if self.type is MarkType.LINK and not (self.attrs or {}).get("href"):
            raise ValueError("link mark requires an href attribute")
        return self


# One node of the rich document tree. `type` selects which payload is valid:
# text nodes carry `text` (+ `marks`), leaves carry nothing, others carry `content`.
class DocNode(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: NodeType
    attrs: Optional[dict[str, Any]] = None
    content: Optional[list[DocNode]] = None
    text: Optional[str] = None
    marks: Optional[list[Mark]] = None

    @model_validator(mode="after")
    def _check_payload(self) -> "DocNode":
        if self.type is NodeType.TEXT:
            if not self.text:
                raise ValueError("text nodes require non-empty text")
            if self.content:
                raise ValueError("text nodes cannot have content")
        elif self.text is not None:
            raise ValueError(f"{self.type.value} nodes cannot carry text")
        elif self.marks and self.type is not NodeType.HARD_BREAK:
            raise ValueError(f"{self.type.value} nodes cannot carry marks")

        if self.type in _LEAF_TYPES and self.type is not NodeType.TEXT and self.content:
            raise ValueError(f"{self.type.value} nodes cannot have content")

        if self.marks:
            self.marks = sorted(self.marks, key=lambda mark: MARK_RANK[mark.type])

        if self.type is NodeType.HEADING:
            level = (self.attrs or {}).get("level")
            if not isinstance(level, int) or isinstance(level, bool) or not 1 <= level <= 6:
                raise ValueError("heading level must be an integer between 1 and 6")
        return self

    def attr(self, name: str, default: Any = None) -> Any:
        value = (self.attrs or {}).get(name)
        return default if value is None else value

    @property
    def children(self) -> list[DocNode]:
        return self.content or []

    @property
    def text_content(self) -> str:
        if self.type is NodeType.TEXT:
            return self.text or ""
        return "".join(child.text_content for child in self.children)

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


DocNode.model_rebuild()


def empty_document() -> DocNode:
    return DocNode(type=NodeType.DOC, content=[DocNode(type=NodeType.PARAGRAPH)])


# Validates untrusted JSON (API payloads, stored rows) into a document tree
def parse_document(data: Any) -> DocNode:
    if isinstance(data, DocNode):
        return data
    node = DocNode.model_validate(data)
    if node.type is not NodeType.DOC:
        raise ValueError(f"document root must be 'doc', got '{node.type.value}'")
    return node
