"""
Template renderer: binds a SectionMap (and, for guides, structured steps with
images) into the kind's ``.docx`` template and returns the document bytes.
"""
from __future__ import annotations

import asyncio
import logging
import os
from datetime import date
from typing import Any, Dict, List, Optional

import aiofiles

from app.exceptions import TemplateNotFound
from app.services.docx_merge import DEFAULT_IMAGE_SIZE, merge_docx
from app.services.image_resolver import ImageResolver
from app.services.section_parser import SectionMap, Step
from app.services.template_registry import GUIDE_SHAPE, TemplateKind

logger = logging.getLogger(__name__)

DEFAULT_CLASSIFICATION = "Standard"


class TemplateRenderer:
    """Loads named templates from *templates_dir* and merges render contexts into them."""

    def __init__(self, templates_dir: str, image_resolver: ImageResolver) -> None:
        self.templates_dir = templates_dir
        self.image_resolver = image_resolver

    def template_path(self, kind: TemplateKind) -> str:
        if not kind.docx_template:
            raise TemplateNotFound(f"{kind.id} (no DOCX template configured)")
        return os.path.join(self.templates_dir, kind.docx_template)

    async def render(
        self,
        kind: TemplateKind,
        section_map: SectionMap,
        *,
        title: Optional[str] = None,
        classification: Optional[str] = None,
    ) -> bytes:
        """
        Render *section_map* into the template for *kind*.

        Raises:
            TemplateNotFound: the kind has no template or the file is missing.
            TemplateRenderFailed: the template references fields the context
                lacks (strict kinds only) or is malformed.
        """
        path = self.template_path(kind)
        try:
            async with aiofiles.open(path, "rb") as fh:
                template_bytes = await fh.read()
        except FileNotFoundError as exc:
            raise TemplateNotFound(kind.docx_template) from exc

        context = await self.build_context(kind, section_map, title=title, classification=classification)

        logger.info(
            "Rendering %s with template %s (%d sections, %d steps)",
            kind.id,
            kind.docx_template,
            len(kind.section_keys),
            len(context.get("steps", [])),
        )
        return await asyncio.to_thread(
            merge_docx,
            template_bytes,
            context,
            null_safe=kind.null_safe,
            allow_images=kind.supports_images,
            image_size=DEFAULT_IMAGE_SIZE,
        )

    async def build_context(
        self,
        kind: TemplateKind,
        section_map: SectionMap,
        *,
        title: Optional[str] = None,
        classification: Optional[str] = None,
    ) -> Dict[str, Any]:
        display_title = title or kind.default_title
        context: Dict[str, Any] = {
            "guide_title": display_title,
            "document_title": display_title,
            "classification": classification or DEFAULT_CLASSIFICATION,
            "date": date.today().strftime("%d/%m/%Y"),
        }

        for key in kind.section_keys:
            value = section_map.get(key)
            context[key] = value if value and value.strip() else kind.render_default(key)

        if kind.shape == GUIDE_SHAPE:
            context["steps"] = await self._project_steps(list(section_map.structured_steps))

        return context

    async def _project_steps(self, steps: List[Step]) -> List[Dict[str, Any]]:
        projected = []
        for index, step in enumerate(steps, start=1):
            image = await self.image_resolver.resolve(step.image) if step.image else None
            projected.append({
                "step_number": index,
                "step_title": step.title or f"Step {index}",
                "step_description": step.description,
                "step_image": image,
                "step_notes": step.notes,
            })

        logger.debug(
            "Projected %d steps (%d with images)",
            len(projected),
            sum(1 for s in projected if s["step_image"]),
        )
        return projected
