"""
Typed document model for generated text.

Stories are turned into a `Document` (a list of heading, paragraph, bullet list and
divider blocks); renderers turn it into markdown or plain text.
"""
import re
from typing import Annotated, List, Literal, Union

from pydantic import BaseModel, Field

from .models import StoryResult


class Heading(BaseModel):
    kind: Literal["heading"] = "heading"
    level: int = 1
    text: str


class Paragraph(BaseModel):
    kind: Literal["paragraph"] = "paragraph"
    text: str


class BulletList(BaseModel):
    kind: Literal["bullet_list"] = "bullet_list"
    items: List[str] = Field(default_factory=list)


class Divider(BaseModel):
    kind: Literal["divider"] = "divider"


Block = Annotated[Union[Heading, Paragraph, BulletList, Divider], Field(discriminator="kind")]


class Document(BaseModel):
    blocks: List[Block] = Field(default_factory=list)


_HEADING = re.compile(r"^(#{1,6})\s+(.*)$")
_BULLET = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+(.*)$")
_DIVIDER = re.compile(r"^\s*(?:-{3,}|\*{3,}|_{3,})\s*$")


def story_document(story: StoryResult, show_arcs: bool = True) -> Document:
    blocks: List = [Heading(level=1, text=story.title)]
    if show_arcs and story.story_arcs:
        for i, arc in enumerate(story.story_arcs):
            if i:
                blocks.append(Divider())
            blocks.append(Heading(level=2, text=arc.title))
            blocks.extend(parse_generated_text(arc.content).blocks)
    else:
        blocks.extend(parse_generated_text(story.story).blocks)
    return Document(blocks=blocks)


def parse_generated_text(text: str) -> Document:
    """Turn markdown-like story text into blocks. Lines of one paragraph are joined with a space."""
    blocks: List = []
    pending: List[str] = []
    bullets: List[str] = []

    def flush():
        if pending:
            blocks.append(Paragraph(text=" ".join(pending)))
            pending.clear()
        if bullets:
            blocks.append(BulletList(items=list(bullets)))
            bullets.clear()

    for raw in (text or "").splitlines():
        line = raw.strip()
        if not line:
            flush()
            continue
        if _DIVIDER.match(line):
            flush()
            blocks.append(Divider())
            continue
        heading = _HEADING.match(line)
        if heading:
            flush()
            blocks.append(Heading(level=len(heading.group(1)), text=heading.group(2).strip().strip("*")))
            continue
        bullet = _BULLET.match(line)
        if bullet:
            if pending:
                blocks.append(Paragraph(text=" ".join(pending)))
                pending.clear()
            bullets.append(bullet.group(1).strip())
            continue
        if bullets:
            flush()
        pending.append(line)
    flush()
    return Document(blocks=blocks)


def render_markdown(doc: Document) -> str:
    out = []
    for block in doc.blocks:
        if isinstance(block, Heading):
            out.append(f"{'#' * block.level} {block.text}")
        elif isinstance(block, Paragraph):
            out.append(block.text)
        elif isinstance(block, BulletList):
            out.append("\n".join(f"- {item}" for item in block.items))
        else:
            out.append("---")
    return "\n\n".join(out) + ("\n" if out else "")


def render_plain(doc: Document) -> str:
    out = []
    for block in doc.blocks:
        if isinstance(block, Heading):
            out.append(block.text.upper() if block.level == 1 else block.text)
        elif isinstance(block, Paragraph):
            out.append(block.text)
        elif isinstance(block, BulletList):
            out.append("\n".join(f"* {item}" for item in block.items))
        else:
            out.append("~" * 20)
    return "\n\n".join(out)
