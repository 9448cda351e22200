"""
Placeholder merge engine for ``.docx`` templates (python-docx).

Supported tags, written directly in the template's paragraph text:

``{field}``
    Replaced by the context value; ``\\n`` in the value becomes a line break.
``{#items}`` ... ``{/items}``
    Paragraph loop.  Each marker must sit alone in its own paragraph; the
    paragraphs (and tables) in between are repeated once per item with the
    item's fields in scope.  Loops may nest.
``{%field}``
    Image tag.  The context value is raw image bytes (or None for no image).

Tags may be split across several runs by Word; replacement is run-aware and
keeps the formatting of the run the tag starts in.  Tags are found in the
body, in table cells and in headers/footers.
"""
from __future__ import annotations

import copy
import io
import logging
import re
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Sequence, Set, Tuple

from docx import Document as DocxDocument
from docx.oxml import OxmlElement
from docx.oxml.ns import qn
from docx.shared import Emu
from docx.text.paragraph import Paragraph

from app.exceptions import TemplateRenderFailed

logger = logging.getLogger(__name__)

TAG_RE = re.compile(r"\{([#/%]?)\s*([A-Za-z_][A-Za-z0-9_.]*)\s*\}")
LOOP_OPEN_RE = re.compile(r"\{#\s*([A-Za-z_][A-Za-z0-9_.]*)\s*\}")
LOOP_CLOSE_RE = re.compile(r"\{/\s*([A-Za-z_][A-Za-z0-9_.]*)\s*\}")

EMU_PER_PIXEL = 9525  # at 96 dpi
DEFAULT_IMAGE_SIZE = (400, 300)  # pixels

_MISSING = object()


@dataclass
class _MergeState:
    null_safe: bool
    allow_images: bool
    image_size: Tuple[int, int]
    missing: Set[str] = field(default_factory=set)


def merge_docx(
    template_bytes: bytes,
    context: Mapping[str, Any],
    *,
    null_safe: bool = False,
    allow_images: bool = False,
    image_size: Tuple[int, int] = DEFAULT_IMAGE_SIZE,
) -> bytes:
    """
    Render *context* into the template and return the new ``.docx`` bytes.

    With ``null_safe`` unknown placeholders render as empty text; otherwise
    they are collected and reported through ``TemplateRenderFailed``.
    """
    try:
        document = DocxDocument(io.BytesIO(template_bytes))
    except Exception as exc:
        raise TemplateRenderFailed(f"template is not a readable .docx archive ({exc})") from exc

    state = _MergeState(null_safe=null_safe, allow_images=allow_images, image_size=image_size)
    scopes: List[Mapping[str, Any]] = [context]

    _render_container(document.element.body, document, scopes, state)

    for section in document.sections:
        for part in (
            section.header,
            section.footer,
            section.first_page_header,
            section.first_page_footer,
            section.even_page_header,
            section.even_page_footer,
        ):
            # Linked parts have no definition of their own; touching them would add one.
            if part.is_linked_to_previous:
                continue
            _render_container(part._element, part, scopes, state)

    if state.missing:
        raise TemplateRenderFailed(
            f"template references unknown fields: {', '.join(sorted(state.missing))}",
            missing_fields=sorted(state.missing),
        )

    out = io.BytesIO()
    document.save(out)
    return out.getvalue()


# ---------------------------------------------------------------------------
# Block-level rendering
# ---------------------------------------------------------------------------

def _render_container(container, parent, scopes: List[Mapping[str, Any]], state: _MergeState) -> None:
    children = list(container.iterchildren())
    i = 0
    while i < len(children):
        child = children[i]
        if child.tag == qn("w:p"):
            loop_name = _marker_name(child, LOOP_OPEN_RE)
            if loop_name is not None:
                end = _find_loop_end(children, i, loop_name)
                _expand_loop(children[i], children[i + 1:end], children[end], loop_name, parent, scopes, state)
                i = end + 1
                continue
            _render_paragraph(Paragraph(child, parent), scopes, state)
        elif child.tag == qn("w:tbl"):
            _render_table(child, parent, scopes, state)
        i += 1


def _render_table(tbl, parent, scopes, state) -> None:
    for tr in tbl.iterchildren(qn("w:tr")):
        for tc in tr.iterchildren(qn("w:tc")):
            _render_container(tc, parent, scopes, state)


def _expand_loop(open_marker, body: Sequence[Any], close_marker, name: str, parent, scopes, state) -> None:
    value = _lookup(scopes, name)
    if value is _MISSING:
        if not state.null_safe:
            state.missing.add(name)
        items: List[Mapping[str, Any]] = []
    else:
        items = _loop_items(value)

    for item in items:
        scratch = OxmlElement("w:body")
        for element in body:
            scratch.append(copy.deepcopy(element))
        _render_container(scratch, parent, scopes + [item], state)
        for element in list(scratch.iterchildren()):
            close_marker.addprevious(element)

    container = open_marker.getparent()
    for element in [open_marker, *body, close_marker]:
        container.remove(element)


def _loop_items(value: Any) -> List[Mapping[str, Any]]:
    if isinstance(value, (list, tuple)):
        return [item if isinstance(item, Mapping) else {} for item in value]
    if isinstance(value, Mapping):
        return [value]
    return [{}] if value else []


def _find_loop_end(children: Sequence[Any], start: int, name: str) -> int:
    depth = 0
    for index in range(start + 1, len(children)):
        element = children[index]
        if element.tag != qn("w:p"):
            continue
        if _marker_name(element, LOOP_OPEN_RE) == name:
            depth += 1
        elif _marker_name(element, LOOP_CLOSE_RE) == name:
            if depth == 0:
                return index
            depth -= 1
    raise TemplateRenderFailed(f"unclosed loop tag {{#{name}}}")


def _marker_name(p_element, pattern: re.Pattern) -> Optional[str]:
    text = "".join(node.text or "" for node in p_element.iter(qn("w:t"))).strip()
    match = pattern.fullmatch(text)
    return match.group(1) if match else None


# ---------------------------------------------------------------------------
# Paragraph-level rendering
# ---------------------------------------------------------------------------

def _render_paragraph(paragraph: Paragraph, scopes, state: _MergeState) -> None:
    runs = paragraph.runs
    if not runs:
        return
    texts = [run.text for run in runs]
    full_text = "".join(texts)
    if "{" not in full_text:
        return
    matches = list(TAG_RE.finditer(full_text))
    if not matches:
        return

    starts = []
    offset = 0
    for text in texts:
        starts.append(offset)
        offset += len(text)

    dirty: Set[int] = set()
    pending_images: List[Tuple[int, bytes]] = []

    for match in reversed(matches):
        prefix, name = match.group(1), match.group(2)
        if prefix in ("#", "/"):
            raise TemplateRenderFailed(
                f"loop tag {match.group(0)} must be the only text in its paragraph"
            )

        replacement, image = _resolve_tag(prefix, name, scopes, state)

        begin, end = match.span()
        first = _run_at(starts, texts, begin)
        last = _run_at(starts, texts, end - 1)
        head = texts[first][: begin - starts[first]]
        if first == last:
            tail = texts[first][end - starts[first]:]
            texts[first] = head + replacement + tail
        else:
            texts[first] = head + replacement
            for middle in range(first + 1, last):
                texts[middle] = ""
                dirty.add(middle)
            texts[last] = texts[last][end - starts[last]:]
            dirty.add(last)
        dirty.add(first)
        if image is not None:
            pending_images.append((first, image))

    for index in sorted(dirty):
        runs[index].text = texts[index]

    width, height = state.image_size
    for index, image in reversed(pending_images):
        try:
            runs[index].add_picture(
                io.BytesIO(image),
                width=Emu(width * EMU_PER_PIXEL),
                height=Emu(height * EMU_PER_PIXEL),
            )
        except Exception as exc:
            logger.warning("Skipping step image that could not be embedded: %s", exc)


def _run_at(starts: Sequence[int], texts: Sequence[str], position: int) -> int:
    for index in range(len(starts) - 1, -1, -1):
        if starts[index] <= position and len(texts[index]) > 0:
            return index
    return 0


def _resolve_tag(prefix: str, name: str, scopes, state: _MergeState) -> Tuple[str, Optional[bytes]]:
    value = _lookup(scopes, name)

    if prefix == "%":
        if not state.allow_images:
            logger.warning("Image tag {%%%s} ignored: this template kind carries no images", name)
            return "", None
        if value is _MISSING and not state.null_safe:
            state.missing.add(name)
        if isinstance(value, (bytes, bytearray)):
            return "", bytes(value)
        return "", None

    if value is _MISSING:
        if not state.null_safe:
            state.missing.add(name)
        return "", None
    if value is None or isinstance(value, (list, tuple, Mapping, bytes, bytearray)):
        return "", None
    return str(value), None


def _lookup(scopes: Sequence[Mapping[str, Any]], name: str) -> Any:
    for scope in reversed(scopes):
        value: Any = scope
        found = True
        for part in name.split("."):
            if isinstance(value, Mapping) and part in value:
                value = value[part]
            else:
                found = False
                break
        if found:
            return value
    return _MISSING
