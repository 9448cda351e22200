"""
Parses a language-model reply into a SectionMap.

The model is asked to separate sections with ``---`` but does not always
comply, so parsing walks a degradation ladder and never raises:

1. ``delimiter``   split on ``---``; used when the part count matches exactly.
2. ``paragraphs``  split on blank lines; used when there are at least as many
   paragraphs as sections (surplus paragraphs are ignored).
3. ``fallback``    the whole reply goes into the first section and every other
   section gets a "<label> not properly parsed" placeholder.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from app.exceptions import InvalidSectionMap
from app.services.template_registry import TemplateKind

logger = logging.getLogger(__name__)

SECTION_DELIMITER = "---"
SECTION_MAP_VERSION = 1

STRATEGY_DELIMITER = "delimiter"
STRATEGY_PARAGRAPHS = "paragraphs"
STRATEGY_FALLBACK = "fallback"

_BLANK_LINE_RE = re.compile(r"\n[ \t]*\n")


def _text(value: Any) -> str:
    return "" if value is None else str(value)


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Step:
    """One instructional step of a guide."""

    step_number: int
    title: str = ""
    description: str = ""
    image: Optional[str] = None  # relative storage reference, e.g. /uploads/x.png
    notes: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_number": self.step_number,
            "title": self.title,
            "description": self.description,
            "image": self.image,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], position: int) -> "Step":
        raw_number = data.get("step_number") or position
        try:
            step_number = int(raw_number)
        except (TypeError, ValueError):
            raise InvalidSectionMap(f"step {position} has a non-numeric step_number {raw_number!r}")
        image = data.get("image")
        return cls(
            step_number=step_number,
            title=_text(data.get("title")),
            description=_text(data.get("description")),
            image=image if isinstance(image, str) and image else None,
            notes=_text(data.get("notes")),
        )


@dataclass(frozen=True)
class SectionMap:
    """
    Parsed, versioned section record for one document kind.

    ``sections`` preserves the kind's key order.  Instances are never mutated;
    ``with_steps`` returns a copy carrying the structured steps.
    """

    kind: str
    sections: Mapping[str, str]
    strategy: str = STRATEGY_DELIMITER
    structured_steps: Tuple[Step, ...] = ()
    format_version: int = SECTION_MAP_VERSION

    def __getitem__(self, key: str) -> str:
        return self.sections[key]

    def get(self, key: str, default: str = "") -> str:
        return self.sections.get(key, default)

    def with_steps(self, steps: List[Step]) -> "SectionMap":
        return SectionMap(
            kind=self.kind,
            sections=self.sections,
            strategy=self.strategy,
            structured_steps=tuple(steps),
            format_version=self.format_version,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "format_version": self.format_version,
            "kind": self.kind,
            "strategy": self.strategy,
            "sections": dict(self.sections),
            "structured_steps": [step.to_dict() for step in self.structured_steps],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SectionMap":
        version = data.get("format_version", SECTION_MAP_VERSION)
        if version != SECTION_MAP_VERSION:
            raise InvalidSectionMap(f"unsupported format version {version!r}")
        sections = data.get("sections") or {}
        if not isinstance(sections, Mapping):
            raise InvalidSectionMap("sections must be an object")
        steps = [
            Step.from_dict(item, position)
            for position, item in enumerate(data.get("structured_steps") or [], start=1)
            if isinstance(item, Mapping)
        ]
        return cls(
            kind=data["kind"],
            sections=MappingProxyType({str(key): _text(value) for key, value in sections.items()}),
            strategy=data.get("strategy", STRATEGY_DELIMITER),
            structured_steps=tuple(steps),
            format_version=version,
        )


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def parse_sections(kind: TemplateKind, raw_text: Optional[str]) -> SectionMap:
    """Convert *raw_text* into a SectionMap for *kind*. Never raises."""
    text = raw_text or ""
    keys = kind.section_keys
    count = len(keys)

    parts = text.split(SECTION_DELIMITER)
    if len(parts) == count:
        logger.debug("parse_sections[%s]: delimiter split matched %d parts", kind.id, count)
        return _build(kind, STRATEGY_DELIMITER, [part.strip() for part in parts])

    paragraphs = [
        p.strip()
        for p in _BLANK_LINE_RE.split(text.replace("\r\n", "\n"))
        if p.strip()
    ]
    if len(paragraphs) >= count:
        logger.info(
            "parse_sections[%s]: %d delimited parts (expected %d), using %d paragraphs",
            kind.id,
            len(parts),
            count,
            len(paragraphs),
        )
        return _build(kind, STRATEGY_PARAGRAPHS, paragraphs[:count])

    logger.warning(
        "parse_sections[%s]: could not split reply (%d parts, %d paragraphs); "
        "falling back to single section",
        kind.id,
        len(parts),
        len(paragraphs),
    )
    values = [text] + [kind.fallback_text(key) for key in keys[1:]]
    return _build(kind, STRATEGY_FALLBACK, values)


def _build(kind: TemplateKind, strategy: str, values: List[str]) -> SectionMap:
    sections = MappingProxyType(dict(zip(kind.section_keys, values)))
    return SectionMap(kind=kind.id, sections=sections, strategy=strategy)
