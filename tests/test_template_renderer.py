"""Tests for rendering section maps into .docx templates."""
import dataclasses
import io
from pathlib import Path

import pytest
from docx import Document as DocxDocument
from docx.shared import Emu

from app.exceptions import TemplateNotFound, TemplateRenderFailed
from app.services.docx_merge import EMU_PER_PIXEL, merge_docx
from app.services.section_parser import Step, parse_sections
from app.services.template_renderer import TemplateRenderer
from tests.conftest import GUIDE_REPLY, PNG_BYTES, RCA_REPLY


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _all_text(content: bytes) -> str:
    doc = DocxDocument(io.BytesIO(content))
    parts = [p.text for p in doc.paragraphs]
    for table in doc.tables:
        for row in table.rows:
            for cell in row.cells:
                parts.extend(p.text for p in cell.paragraphs)
    for section in doc.sections:
        if not section.footer.is_linked_to_previous:
            parts.extend(p.text for p in section.footer.paragraphs)
    return "\n".join(parts)


def _template_bytes(*lines: str) -> bytes:
    doc = DocxDocument()
    for line in lines:
        doc.add_paragraph(line)
    out = io.BytesIO()
    doc.save(out)
    return out.getvalue()


def _write_template(directory: Path, name: str, *lines: str) -> None:
    (directory / name).write_bytes(_template_bytes(*lines))


# ---------------------------------------------------------------------------
# Report kinds
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_rca_render_fills_every_placeholder(renderer, registry):
    kind = registry["rca"]
    content = await renderer.render(kind, parse_sections(kind, RCA_REPLY), title="Q1 Outage")

    text = _all_text(content)
    assert "{" not in text
    assert "Q1 Outage" in text
    assert "Classification: Standard" in text
    assert "Database connection pool exhausted at 09:12 UTC." in text
    assert "Capacity settings now go through review." in text


@pytest.mark.asyncio
async def test_rca_render_uses_defaults_for_blank_sections(renderer, registry):
    kind = registry["rca"]
    section_map = parse_sections(kind, "---".join(["a", "", "c", "d", "e", "f"]))

    text = _all_text(await renderer.render(kind, section_map))

    assert "Executive summary not available" in text
    assert "Root Cause Analysis Report" in text


@pytest.mark.asyncio
async def test_strict_kind_reports_missing_fields(templates_dir, image_resolver, registry):
    _write_template(templates_dir, "strict.docx", "{executive_summary}", "{approver} {sign_off.date}")
    kind = dataclasses.replace(registry["rca"], docx_template="strict.docx")
    renderer = TemplateRenderer(str(templates_dir), image_resolver)

    with pytest.raises(TemplateRenderFailed) as exc_info:
        await renderer.render(kind, parse_sections(kind, RCA_REPLY))

    assert exc_info.value.missing_fields == ["approver", "sign_off.date"]
    assert exc_info.value.details == {"missing_fields": ["approver", "sign_off.date"]}


@pytest.mark.asyncio
async def test_prompt_only_kind_has_no_template(renderer, registry):
    kind = registry["meeting-minutes"]
    with pytest.raises(TemplateNotFound):
        await renderer.render(kind, parse_sections(kind, "a---b---c---d"))


@pytest.mark.asyncio
async def test_missing_template_file(tmp_path, image_resolver, registry):
    renderer = TemplateRenderer(str(tmp_path / "nowhere"), image_resolver)
    kind = registry["rca"]
    with pytest.raises(TemplateNotFound) as exc_info:
        await renderer.render(kind, parse_sections(kind, RCA_REPLY))
    assert "rca-template.docx" in exc_info.value.message


# ---------------------------------------------------------------------------
# Guides
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_guide_expands_steps_with_images(renderer, registry, image_resolver):
    kind = registry["step-by-step-guide"]
    steps = [
        Step(step_number=1, title="Create a key", description="Open the console.",
             image="/uploads/step1.png", notes="Copy it somewhere safe."),
        Step(step_number=2, description="Deploy the key."),
    ]
    section_map = parse_sections(kind, GUIDE_REPLY).with_steps(steps)

    content = await renderer.render(kind, section_map, title="Key Rotation")

    text = _all_text(content)
    assert "{" not in text
    assert "Key Rotation" in text
    assert "Step 1: Create a key" in text
    assert "Step 2: Step 2" in text
    assert "Open the console." in text
    assert "Deploy the key." in text
    assert "Copy it somewhere safe." in text

    doc = DocxDocument(io.BytesIO(content))
    assert len(doc.inline_shapes) == 1
    assert doc.inline_shapes[0].width == Emu(400 * EMU_PER_PIXEL)
    assert doc.inline_shapes[0].height == Emu(300 * EMU_PER_PIXEL)
    assert image_resolver.requested == ["/uploads/step1.png"]


@pytest.mark.asyncio
async def test_guide_without_steps_drops_the_loop(renderer, registry):
    kind = registry["step-by-step-guide"]
    text = _all_text(await renderer.render(kind, parse_sections(kind, GUIDE_REPLY)))
    assert "Step 1" not in text
    assert "Verify traffic before revoking the old key." in text


@pytest.mark.asyncio
async def test_unresolvable_image_is_skipped(renderer, registry):
    kind = registry["step-by-step-guide"]
    steps = [Step(step_number=1, title="Missing", image="/uploads/gone.png")]
    content = await renderer.render(kind, parse_sections(kind, GUIDE_REPLY).with_steps(steps))
    assert len(DocxDocument(io.BytesIO(content)).inline_shapes) == 0


@pytest.mark.asyncio
async def test_guide_defaults_and_null_safety(templates_dir, image_resolver, registry):
    _write_template(templates_dir, "lenient.docx", "{target_audience}|{prerequisites}|{not_a_field}|")
    kind = dataclasses.replace(registry["step-by-step-guide"], docx_template="lenient.docx")
    renderer = TemplateRenderer(str(templates_dir), image_resolver)
    section_map = parse_sections(kind, "overview---  ---\n---steps---end")

    text = _all_text(await renderer.render(kind, section_map))

    assert text.strip() == "General users|No specific prerequisites||"


# ---------------------------------------------------------------------------
# Merge engine
# ---------------------------------------------------------------------------

def test_tags_split_across_runs_are_replaced():
    doc = DocxDocument()
    paragraph = doc.add_paragraph()
    paragraph.add_run("Summary: {exec")
    bold = paragraph.add_run("utive_sum")
    bold.bold = True
    paragraph.add_run("mary} (end)")
    out = io.BytesIO()
    doc.save(out)

    content = merge_docx(out.getvalue(), {"executive_summary": "All good"})

    assert _all_text(content).strip() == "Summary: All good (end)"


def test_multiline_values_and_table_cells():
    doc = DocxDocument()
    table = doc.add_table(rows=1, cols=2)
    table.cell(0, 0).text = "{label}"
    table.cell(0, 1).text = "{value}"
    out = io.BytesIO()
    doc.save(out)

    content = merge_docx(out.getvalue(), {"label": "Owner", "value": "Alice"})

    text = _all_text(content)
    assert "Owner" in text and "Alice" in text


def test_unclosed_loop_is_a_render_failure():
    with pytest.raises(TemplateRenderFailed):
        merge_docx(_template_bytes("{#steps}", "{step_title}"), {"steps": []}, null_safe=True)


def test_loop_tag_mixed_with_text_is_a_render_failure():
    with pytest.raises(TemplateRenderFailed):
        merge_docx(_template_bytes("before {#steps} after", "{/steps}"), {"steps": []})


def test_image_tag_ignored_without_image_support():
    content = merge_docx(
        _template_bytes("Figure: {%diagram}"), {"diagram": PNG_BYTES}, allow_images=False
    )
    assert _all_text(content).strip() == "Figure:"
    assert len(DocxDocument(io.BytesIO(content)).inline_shapes) == 0


def test_unreadable_template():
    with pytest.raises(TemplateRenderFailed):
        merge_docx(b"not a zip archive", {})
