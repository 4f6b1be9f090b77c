# adf.py
"""Conversion between plain text / light markdown and Atlassian Document Format (ADF)."""
import re
from typing import Any, Dict, List, Optional

_HEADING = re.compile(r"^(#{1,6})\s+(.+)$")
_BULLET = re.compile(r"^[*\-]\s+(.+)$")
_BOLD = re.compile(r"\*\*(.+?)\*\*")


def _text(value: str, bold: bool = False) -> Dict[str, Any]:
    node: Dict[str, Any] = {"type": "text", "text": value}
    if bold:
        node["marks"] = [{"type": "strong"}]
    return node


def _inline(line: str) -> List[Dict[str, Any]]:
    # re.split with one group alternates plain / bold segments
    parts = _BOLD.split(line)
    return [_text(part, bold=(i % 2 == 1)) for i, part in enumerate(parts) if part]


def _block(paragraph: str) -> Dict[str, Any]:
    heading = _HEADING.match(paragraph)
    if heading:
        return {
            "type": "heading",
            "attrs": {"level": len(heading.group(1))},
            "content": [_text(heading.group(2))],
        }

    lines = paragraph.split("\n")
    if all(_BULLET.match(line) for line in lines):
        return {
            "type": "bulletList",
            "content": [
                {"type": "listItem",
                 "content": [{"type": "paragraph", "content": _inline(_BULLET.match(line).group(1))}]}
                for line in lines
            ],
        }

    if paragraph.startswith("```") and paragraph.endswith("```") and len(paragraph) >= 6:
        return {"type": "codeBlock", "content": [_text(paragraph[3:-3].strip())]}

    content: List[Dict[str, Any]] = []
    for index, line in enumerate(lines):
        if index > 0:
            content.append({"type": "hardBreak"})
        content.extend(_inline(line))
    return {"type": "paragraph", "content": content or [_text(" ")]}


def text_to_adf(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Converts plain text with light markdown (headings, bullets, code fences, **bold**) to an ADF doc.

    Paragraphs are separated by blank lines. Returns None for empty input.
    """
    if not text:
        return None
    paragraphs = [p for p in re.split(r"\n\s*\n", text.strip()) if p.strip()]
    content = [_block(p) for p in paragraphs]
    return {
        "type": "doc",
        "version": 1,
        "content": content or [{"type": "paragraph", "content": [_text(text)]}],
    }


def _inline_text(nodes: Optional[List[Dict[str, Any]]]) -> str:
    parts = []
    for node in nodes or []:
        node_type = node.get("type")
        if node_type == "text":
            parts.append(node.get("text", ""))
        elif node_type == "hardBreak":
            parts.append("\n")
        elif node_type == "mention":
            parts.append(f"@{node.get('attrs', {}).get('text', 'user')}")
        elif node_type == "emoji":
            parts.append(node.get("attrs", {}).get("shortName", ""))
    return "".join(parts)


def adf_to_text(adf: Any) -> str:
    """Flattens an ADF document to readable text. Plain strings are returned as-is."""
    if isinstance(adf, str):
        return adf
    if not isinstance(adf, dict) or not adf.get("content"):
        return ""

    blocks = []
    for node in adf["content"]:
        node_type = node.get("type")
        if node_type == "heading":
            level = node.get("attrs", {}).get("level", 1)
            blocks.append("#" * level + " " + _inline_text(node.get("content")))
        elif node_type in ("bulletList", "orderedList"):
            items = []
            for index, item in enumerate(node.get("content", [])):
                prefix = "• " if node_type == "bulletList" else f"{index + 1}. "
                first = (item.get("content") or [{}])[0]
                items.append(prefix + _inline_text(first.get("content")))
            blocks.append("\n".join(items))
        elif node_type == "codeBlock":
            blocks.append("```\n" + _inline_text(node.get("content")) + "\n```")
        else:
            blocks.append(_inline_text(node.get("content")))
    return "\n\n".join(blocks)
