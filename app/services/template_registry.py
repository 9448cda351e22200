"""
Template registry: the fixed set of document kinds the service can produce.

Each kind declares its prompts, the ordered section keys the language model
must fill, the human-readable labels used in fallback placeholders, and the
``.docx`` template it renders into.  The registry is built once at startup
by ``load_template_registry()`` and handed by reference to the parser,
renderer and orchestrator.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

REPORT_SHAPE = "report"
GUIDE_SHAPE = "guide"


@dataclass(frozen=True)
class TemplateKind:
    """Immutable description of one document kind."""

    id: str
    name: str
    shape: str
    system_prompt: str
    user_prompt: str  # str.format template over the input section names
    section_keys: Tuple[str, ...]
    section_labels: Mapping[str, str]
    render_defaults: Mapping[str, str] = field(default_factory=dict)
    docx_template: Optional[str] = None
    default_title: str = "Document Title"
    null_safe: bool = False

    @property
    def section_count(self) -> int:
        return len(self.section_keys)

    @property
    def supports_images(self) -> bool:
        return self.shape == GUIDE_SHAPE

    def build_user_prompt(self, sections: Mapping[str, str]) -> str:
        """Fill the user prompt; input sections the caller left out render empty."""
        return self.user_prompt.format_map(_BlankDefault(sections))

    def fallback_text(self, key: str) -> str:
        return f"{self.section_labels.get(key, key)} not properly parsed"

    def render_default(self, key: str) -> str:
        return self.render_defaults.get(key) or f"{self.section_labels.get(key, key)} not available"


class _BlankDefault(dict):
    def __init__(self, values: Mapping[str, str]) -> None:
        super().__init__((k, "" if v is None else v) for k, v in values.items())

    def __missing__(self, key: str) -> str:
        return ""


# ---------------------------------------------------------------------------
# Prompt templates
# ---------------------------------------------------------------------------

_RCA_SYSTEM_PROMPT = (
    "You are a technical documentation expert. Generate professional content for "
    "each section of a Root Cause Analysis document. Provide clear, concise content "
    "that can be directly inserted into each section."
)

_RCA_USER_PROMPT = """\
Create professional content for each section of an RCA document based on this user input:

Initial Findings: {initial_findings}
Summary: {summary}
Timeline: {timeline}
Risk Assessment: {risk_assessment}
Conclusion: {conclusion}

Generate exactly 6 sections separated by "---" (three dashes). Each section should be 2-3 professional sentences:

[Initial findings content - expand the user's initial findings into professional analysis]
---
[Executive summary content - comprehensive summary of the incident and response]
---
[Timeline content - format as bullet points with timestamps and clear actions]
---
[Risk and impact content - analyze customer and service impact]
---
[Resolution actions content - describe immediate actions and prevention measures]
---
[Lessons learned content - process improvements and knowledge gained]

Important:
- Provide exactly 6 sections separated by ---
- No labels or headers, just the content
- Professional technical writing style
- Each section should be substantial but concise
"""

_GUIDE_SYSTEM_PROMPT = (
    "You are an expert technical writer specializing in creating clear, comprehensive "
    "instructional guides. Generate professional content for step-by-step tutorials "
    "that are easy to follow and understand."
)

_GUIDE_USER_PROMPT = """\
Create professional content for a step-by-step guide based on the following information:

Guide Overview: {guide_overview}
Target Audience: {target_audience}
Prerequisites: {prerequisites}
Steps Description: {steps}
Conclusion: {conclusion}

Generate content separated by "---" (three dashes) in this exact order:

[Write 2-3 sentences expanding on the guide overview and its purpose]
---
[Write 1-2 sentences describing the target audience and skill level required]
---
[Write 1-2 sentences listing prerequisites or requirements to get started]
---
[Create a detailed breakdown of steps based on the steps description. Format as numbered steps with clear, actionable instructions. Each step should be 2-3 sentences explaining what to do and why.]
---
[Write 2-3 sentences for conclusion with summary, troubleshooting tips, or next steps]

Important: Provide only clean, professional content without labels or markdown formatting.
"""

_STATUS_SYSTEM_PROMPT = (
    "You are a project management expert. Generate professional project status "
    "reports that are clear, actionable, and provide stakeholders with essential "
    "project insights."
)

_STATUS_USER_PROMPT = """\
Create a professional Project Status Report based on:

Executive Summary: {executive_summary}
Key Accomplishments: {accomplishments}
Challenges & Risks: {challenges}
Next Steps: {next_steps}

Generate exactly 4 sections separated by "---" (three dashes), in the order above,
with professional language suitable for stakeholder consumption.
"""

_MINUTES_SYSTEM_PROMPT = (
    "You are an executive assistant expert in creating professional meeting "
    "documentation. Generate clear, actionable meeting minutes that capture key "
    "decisions and follow-up items."
)

_MINUTES_USER_PROMPT = """\
Create professional meeting minutes based on:

Meeting Information: {meeting_info}
Key Discussions: {key_discussions}
Action Items: {action_items}
Next Steps: {next_steps}

Generate exactly 4 sections separated by "---" (three dashes), in the order above,
with action items that name their owners.
"""


def _build_kinds() -> Tuple[TemplateKind, ...]:
    return (
        TemplateKind(
            id="rca",
            name="Root Cause Analysis",
            shape=REPORT_SHAPE,
            system_prompt=_RCA_SYSTEM_PROMPT,
            user_prompt=_RCA_USER_PROMPT,
            section_keys=(
                "initial_findings",
                "executive_summary",
                "timeline_events",
                "risk_impact",
                "resolution_actions",
                "lessons_learned",
            ),
            section_labels=MappingProxyType({
                "initial_findings": "Initial findings",
                "executive_summary": "Executive summary",
                "timeline_events": "Timeline",
                "risk_impact": "Risk assessment",
                "resolution_actions": "Resolution actions",
                "lessons_learned": "Lessons learned",
            }),
            docx_template="rca-template.docx",
            default_title="Root Cause Analysis Report",
        ),
        TemplateKind(
            id="step-by-step-guide",
            name="Step-by-Step Guide",
            shape=GUIDE_SHAPE,
            system_prompt=_GUIDE_SYSTEM_PROMPT,
            user_prompt=_GUIDE_USER_PROMPT,
            section_keys=(
                "guide_overview",
                "target_audience",
                "prerequisites",
                "steps_content",
                "conclusion",
            ),
            section_labels=MappingProxyType({
                "guide_overview": "Guide overview",
                "target_audience": "Target audience",
                "prerequisites": "Prerequisites",
                "steps_content": "Steps",
                "conclusion": "Conclusion",
            }),
            render_defaults=MappingProxyType({
                "target_audience": "General users",
                "prerequisites": "No specific prerequisites",
            }),
            docx_template="step-by-step-guide-template.docx",
            default_title="Document Title",
            null_safe=True,
        ),
        TemplateKind(
            id="project-status",
            name="Project Status Report",
            shape=REPORT_SHAPE,
            system_prompt=_STATUS_SYSTEM_PROMPT,
            user_prompt=_STATUS_USER_PROMPT,
            section_keys=("executive_summary", "accomplishments", "challenges", "next_steps"),
            section_labels=MappingProxyType({
                "executive_summary": "Executive summary",
                "accomplishments": "Key accomplishments",
                "challenges": "Challenges and risks",
                "next_steps": "Next steps",
            }),
            default_title="Project Status Report",
        ),
        TemplateKind(
            id="meeting-minutes",
            name="Meeting Minutes",
            shape=REPORT_SHAPE,
            system_prompt=_MINUTES_SYSTEM_PROMPT,
            user_prompt=_MINUTES_USER_PROMPT,
            section_keys=("meeting_info", "key_discussions", "action_items", "next_steps"),
            section_labels=MappingProxyType({
                "meeting_info": "Meeting information",
                "key_discussions": "Key discussions",
                "action_items": "Action items",
                "next_steps": "Next steps",
            }),
            default_title="Meeting Minutes",
        ),
    )


TemplateRegistry = Mapping[str, TemplateKind]


def load_template_registry() -> TemplateRegistry:
    """Build the read-only kind table. Call once at process start."""
    kinds: Dict[str, TemplateKind] = {kind.id: kind for kind in _build_kinds()}
    return MappingProxyType(kinds)
