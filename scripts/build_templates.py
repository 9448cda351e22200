"""Regenerate the .docx templates shipped in templates/ (python-docx).

Run from the repository root:  python scripts/build_templates.py [output_dir]
"""
import os
import sys

from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.shared import Pt, RGBColor

DEFAULT_OUTPUT_DIR = "templates"

RCA_SECTIONS = [
    ("1. Initial Findings", "initial_findings"),
    ("2. Executive Summary", "executive_summary"),
    ("3. Timeline of Events", "timeline_events"),
    ("4. Risk & Impact Assessment", "risk_impact"),
    ("5. Resolution Actions", "resolution_actions"),
    ("6. Lessons Learned", "lessons_learned"),
]

GUIDE_INTRO = [
    ("Overview", "guide_overview"),
    ("Target Audience", "target_audience"),
    ("Prerequisites", "prerequisites"),
    ("Summary of Steps", "steps_content"),
]


def new_document():
    doc = Document()
    style = doc.styles['Normal']
    style.font.name = 'Calibri'
    style.font.size = Pt(11)
    return doc


def add_title(doc, tag):
    title = doc.add_heading(tag, level=0)
    title.alignment = WD_ALIGN_PARAGRAPH.CENTER
    return title


def add_meta_line(doc, text):
    p = doc.add_paragraph()
    run = p.add_run(text)
    run.italic = True
    run.font.size = Pt(9)
    run.font.color.rgb = RGBColor(90, 90, 90)
    return p


def add_section(doc, heading, tag, level=1):
    doc.add_heading(heading, level=level)
    return doc.add_paragraph(f"{{{tag}}}")


def build_rca(path):
    doc = new_document()
    add_title(doc, "{document_title}")
    add_meta_line(doc, "Classification: {classification}    Date: {date}")
    for heading, tag in RCA_SECTIONS:
        add_section(doc, heading, tag)
    doc.sections[0].footer.paragraphs[0].text = "{document_title} - {classification}"
    doc.save(path)


def build_guide(path):
    doc = new_document()
    add_title(doc, "{guide_title}")
    add_meta_line(doc, "Date: {date}")
    for heading, tag in GUIDE_INTRO:
        add_section(doc, heading, tag)

    doc.add_heading("Steps", level=1)
    doc.add_paragraph("{#steps}")
    doc.add_heading("Step {step_number}: {step_title}", level=2)
    doc.add_paragraph("{step_description}")
    doc.add_paragraph("{%step_image}")
    notes = doc.add_paragraph()
    notes.add_run("Notes: ").bold = True
    notes.add_run("{step_notes}")
    doc.add_paragraph("{/steps}")

    add_section(doc, "Conclusion", "conclusion")
    doc.save(path)


def build_all(output_dir=DEFAULT_OUTPUT_DIR):
    os.makedirs(output_dir, exist_ok=True)
    build_rca(os.path.join(output_dir, "rca-template.docx"))
    build_guide(os.path.join(output_dir, "step-by-step-guide-template.docx"))
    return output_dir


if __name__ == "__main__":
    target = build_all(sys.argv[1] if len(sys.argv) > 1 else DEFAULT_OUTPUT_DIR)
    print(f"Templates written to {os.path.abspath(target)}")
