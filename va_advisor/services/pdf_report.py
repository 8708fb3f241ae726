"""PDF rendering of analysis results and SOPs.

Analyses use a fixed layout built with fpdf2: header block, executive
summary, then the service-specific role/project details, risks and the
implementation plan. SOPs are rendered from their HTML, block by block.
Core fonts only cover latin-1, so every string goes through
:func:`_latin1`.
"""

import logging
import re
from datetime import date
from typing import Any, Optional

from bs4 import BeautifulSoup, Tag
from fpdf import FPDF
from fpdf.enums import XPos, YPos

from va_advisor.models.pipeline import ServiceType

logger = logging.getLogger(__name__)

_REPLACEMENTS = {
    "\u2014": "-",
    "\u2013": "-",
    "\u2018": "'",
    "\u2019": "'",
    "\u201c": '"',
    "\u201d": '"',
    "\u2022": "-",
    "\u2026": "...",
}


def _latin1(value: Any) -> str:
    text = "" if value is None else str(value)
    for src, dst in _REPLACEMENTS.items():
        text = text.replace(src, dst)
    return text.encode("latin-1", errors="replace").decode("latin-1")


def _humanize(key: str) -> str:
    return key.replace("_", " ").strip().capitalize()


def role_title(analysis: dict) -> str:
    """Headline used for the report title and the download filename."""
    preview = analysis.get("preview") or {}
    package = analysis.get("full_package") or {}
    structure = package.get("service_structure") or {}
    specs = package.get("detailed_specifications") or {}
    service_type = preview.get("service_type") or structure.get("service_type") or ""

    if service_type == ServiceType.DEDICATED_VA.value:
        return (
            preview.get("role_title")
            or (structure.get("dedicated_va_role") or {}).get("title")
            or specs.get("title")
            or "Dedicated VA Role"
        )
    if service_type == ServiceType.UNICORN_VA.value:
        return (
            preview.get("core_va_title")
            or (structure.get("core_va_role") or {}).get("title")
            or (specs.get("core_va_jd") or {}).get("title")
            or "Unicorn VA Service"
        )
    if service_type == ServiceType.PROJECTS_ON_DEMAND.value:
        return f"Projects On Demand {preview.get('project_count') or 0} Projects"
    return "Job Analysis"


def report_filename(analysis: dict, on: Optional[date] = None) -> str:
    safe = re.sub(r"[^a-zA-Z0-9]", "_", role_title(analysis))
    return f"{safe}_{(on or date.today()).isoformat()}.pdf"


def sop_filename(title: str, on: Optional[date] = None) -> str:
    safe = re.sub(r"[^a-zA-Z0-9]", "_", title or "SOP")
    return f"{safe}_{(on or date.today()).isoformat()}.pdf"


class AnalysisReport(FPDF):
    """fpdf2 document with the report's heading and list helpers."""

    def __init__(self, heading: str) -> None:
        super().__init__(format="A4")
        self.heading = _latin1(heading)
        self.set_auto_page_break(auto=True, margin=15)
        self.set_margins(15, 15, 15)

    def header(self) -> None:
        self.set_font("Helvetica", "B", 9)
        self.set_text_color(120, 120, 120)
        self.cell(0, 8, self.heading, align="R", new_x=XPos.LMARGIN, new_y=YPos.NEXT)

    def footer(self) -> None:
        self.set_y(-15)
        self.set_font("Helvetica", "I", 8)
        self.set_text_color(128, 128, 128)
        self.cell(0, 10, f"Page {self.page_no()}", align="C")

    # ------------------------------------------------------------------
    # Building blocks
    # ------------------------------------------------------------------

    def title_block(self, title: str, subtitle: str) -> None:
        self.set_font("Helvetica", "B", 20)
        self.set_text_color(26, 26, 128)
        self.multi_cell(0, 10, _latin1(title), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        self.set_font("Helvetica", "", 12)
        self.set_text_color(30, 30, 30)
        self.cell(0, 7, _latin1(subtitle), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        self.set_font("Helvetica", "", 10)
        self.cell(
            0, 6, f"Generated: {date.today().isoformat()}", new_x=XPos.LMARGIN, new_y=YPos.NEXT
        )
        self.ln(6)

    def section_title(self, title: str) -> None:
        self.ln(4)
        self.set_font("Helvetica", "B", 14)
        self.set_text_color(26, 26, 128)
        self.cell(0, 9, _latin1(title), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        self.set_draw_color(26, 26, 128)
        self.set_line_width(0.4)
        self.line(self.l_margin, self.get_y(), self.w - self.r_margin, self.get_y())
        self.ln(3)

    def label(self, text: str) -> None:
        self.set_font("Helvetica", "B", 11)
        self.set_text_color(30, 30, 30)
        self.multi_cell(0, 7, _latin1(text), new_x=XPos.LMARGIN, new_y=YPos.NEXT)

    def field(self, label: str, value: Any) -> None:
        if value in (None, "", [], {}):
            return
        self.label(label)
        self.body_text(value)

    def body_text(self, value: Any) -> None:
        self.set_font("Helvetica", "", 10)
        self.set_text_color(30, 30, 30)
        self.multi_cell(0, 5.5, _latin1(value), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        self.ln(1.5)

    def bullets(self, items: list[Any], indent: float = 4) -> None:
        self.set_font("Helvetica", "", 10)
        self.set_text_color(30, 30, 30)
        for item in items:
            if item in (None, ""):
                continue
            self.set_x(self.l_margin + indent)
            self.multi_cell(
                0, 5.5, _latin1(f"- {self._inline(item)}"), new_x=XPos.LMARGIN, new_y=YPos.NEXT
            )
        self.ln(1.5)

    def list_item(self, text: str, marker: str = "-", level: int = 1) -> None:
        self.set_font("Helvetica", "", 10)
        self.set_text_color(30, 30, 30)
        self.set_x(self.l_margin + 4 * level)
        self.multi_cell(
            0, 5.5, _latin1(f"{marker} {text}"), new_x=XPos.LMARGIN, new_y=YPos.NEXT
        )

    def mapping(self, data: dict) -> None:
        """Render a nested dict as labelled fields and bullet lists."""
        for key, value in data.items():
            if isinstance(value, dict):
                self.label(_humanize(key))
                self.bullets([f"{_humanize(k)}: {self._inline(v)}" for k, v in value.items() if v])
            elif isinstance(value, list):
                if value:
                    self.label(_humanize(key))
                    self.bullets(value)
            else:
                self.field(_humanize(key), value)

    @staticmethod
    def _inline(item: Any) -> str:
        if isinstance(item, dict):
            return "; ".join(
                f"{_humanize(k)}: {AnalysisReport._inline(v)}" for k, v in item.items() if v
            )
        if isinstance(item, list):
            return ", ".join(AnalysisReport._inline(v) for v in item if v)
        return str(item)


# ------------------------------------------------------------------
# Sections
# ------------------------------------------------------------------


def _executive_summary(pdf: AnalysisReport, preview: dict) -> None:
    pdf.section_title("EXECUTIVE SUMMARY")
    pdf.field("Service Type", preview.get("service_type"))
    pdf.field("Confidence", preview.get("service_confidence"))
    pdf.field("Service Reasoning", preview.get("service_reasoning"))
    pdf.field("Primary Outcome", preview.get("primary_outcome"))

    if preview.get("role_title"):
        pdf.field("Role Title", preview["role_title"])
        pdf.field("Hours per Week", preview.get("hours_per_week"))
    if preview.get("project_count") is not None:
        pdf.field("Project Count", preview["project_count"])
        pdf.field("Total Hours", preview.get("total_hours"))
        pdf.field("Estimated Timeline", preview.get("estimated_timeline"))
    if preview.get("core_va_title"):
        pdf.field("Core VA Title", preview["core_va_title"])
        pdf.field("Core VA Hours", preview.get("core_va_hours"))
        pdf.field("Team Support Areas", preview.get("team_support_areas"))

    summary = preview.get("summary") or {}
    if summary:
        pdf.section_title("SUMMARY")
        pdf.field("Company Stage", summary.get("company_stage"))
        pdf.field("90-Day Outcome", summary.get("outcome_90d"))
        pdf.field("Primary Bottleneck", summary.get("primary_bottleneck"))
        pdf.field("Workflow Analysis", summary.get("workflow_analysis"))


def _job_description(pdf: AnalysisReport, jd: dict) -> None:
    pdf.field("Title", jd.get("title"))
    pdf.field("Hours per Week", jd.get("hours_per_week"))
    pdf.field("Mission", jd.get("mission_statement"))
    pdf.field("Primary Outcome", jd.get("primary_outcome"))
    if jd.get("core_outcomes"):
        pdf.label("Core Outcomes")
        pdf.bullets(jd["core_outcomes"])
    for responsibility in jd.get("responsibilities") or []:
        pdf.label(responsibility.get("category") or "Responsibilities")
        pdf.bullets(responsibility.get("details") or [])
    tools = [t.get("tool") for t in jd.get("tools") or [] if isinstance(t, dict)]
    if tools:
        pdf.field("Tools", ", ".join(t for t in tools if t))
    kpis = jd.get("kpis") or []
    if kpis:
        pdf.label("KPIs")
        pdf.bullets(
            [
                f"{k.get('metric')}: {k.get('target')} ({k.get('frequency')})"
                for k in kpis
                if k.get("metric")
            ]
        )


def _details(pdf: AnalysisReport, service_type: str, package: dict) -> None:
    specs = package.get("detailed_specifications") or {}
    structure = package.get("service_structure") or {}

    if service_type == ServiceType.DEDICATED_VA.value:
        pdf.section_title("ROLE DETAILS")
        _job_description(pdf, specs)
    elif service_type == ServiceType.UNICORN_VA.value:
        pdf.section_title("CORE VA ROLE DETAILS")
        _job_description(pdf, specs.get("core_va_jd") or {})
        areas = structure.get("team_support_areas") or specs.get("team_support_specs") or []
        if areas:
            pdf.section_title("TEAM SUPPORT AREAS")
            for area in areas:
                pdf.field(area.get("skill_category") or "Support area", area.get("why_team_not_va"))
                pdf.bullets(area.get("use_cases") or [])
        pdf.field("Coordination Model", structure.get("coordination_model"))
    elif service_type == ServiceType.PROJECTS_ON_DEMAND.value:
        pdf.section_title("PROJECT DETAILS")
        for project in specs.get("projects") or []:
            pdf.field(project.get("project_name") or "Project", project.get("overview"))
            pdf.bullets(project.get("objectives") or [])

    for label, key in (("PROS", "pros"), ("CONS", "cons")):
        if structure.get(key):
            pdf.section_title(label)
            pdf.bullets(structure[key])
    if structure.get("scaling_path"):
        pdf.section_title("SCALING PATH")
        pdf.body_text(structure["scaling_path"])


def _risks(pdf: AnalysisReport, preview: dict, package: dict) -> None:
    risk_management = package.get("risk_management") or {}
    risks = [
        f"{r.get('risk')} ({r.get('severity')}): {r.get('mitigation')}"
        for r in risk_management.get("risks") or []
        if isinstance(r, dict) and r.get("risk")
    ]
    if risks or preview.get("key_risks"):
        pdf.section_title("KEY CONSIDERATIONS")
        pdf.bullets(risks or preview.get("key_risks") or [])
    if preview.get("critical_questions"):
        pdf.label("Critical Questions")
        pdf.bullets(preview["critical_questions"])


def _implementation(pdf: AnalysisReport, package: dict) -> None:
    plan = package.get("implementation_plan") or {}
    steps = plan.get("immediate_next_steps") or []
    if steps:
        pdf.section_title("IMMEDIATE NEXT STEPS")
        for index, step in enumerate(steps, start=1):
            pdf.field(
                f"{index}. {step.get('step', '')}",
                f"Owner: {step.get('owner', '')} | Timeline: {step.get('timeline', '')} "
                f"| Output: {step.get('output', '')}",
            )
    roadmap = {k: v for k, v in (plan.get("onboarding_roadmap") or {}).items() if v}
    if roadmap:
        pdf.section_title("ONBOARDING ROADMAP")
        pdf.mapping(roadmap)
    milestones = {k: v for k, v in (plan.get("success_milestones") or {}).items() if v}
    if milestones:
        pdf.section_title("SUCCESS MILESTONES")
        pdf.mapping(milestones)


def render_analysis_pdf(analysis: dict, *, subtitle: str = "Job Description Analysis") -> bytes:
    """Render a ``{preview, full_package, metadata}`` body to PDF bytes."""
    preview = analysis.get("preview") or {}
    package = analysis.get("full_package") or {}
    service_type = (
        preview.get("service_type")
        or (package.get("service_structure") or {}).get("service_type")
        or ""
    )
    title = role_title(analysis)

    pdf = AnalysisReport(heading=title)
    pdf.add_page()
    pdf.title_block(title, f"{subtitle} Report")
    _executive_summary(pdf, preview)
    _details(pdf, service_type, package)
    _risks(pdf, preview, package)
    _implementation(pdf, package)

    logger.info(f"Rendered analysis PDF ({pdf.page_no()} pages) for {title}")
    return bytes(pdf.output())


# ------------------------------------------------------------------
# SOPs
# ------------------------------------------------------------------

_SOP_BLOCKS = ["h1", "h2", "h3", "h4", "h5", "h6", "p", "li", "tr", "pre", "blockquote"]


def _text(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip()


def _own_text(item: Tag) -> str:
    """Text of a list item without its nested lists."""
    parts = []
    for child in item.children:
        if isinstance(child, Tag):
            if child.name in ("ul", "ol"):
                continue
            parts.append(child.get_text(" "))
        else:
            parts.append(str(child))
    return _text(" ".join(parts))


def _sop_block(pdf: AnalysisReport, element: Tag) -> None:
    name = element.name
    if name in ("h1", "h2"):
        pdf.section_title(_text(element.get_text(" ")))
    elif name in ("h3", "h4", "h5", "h6"):
        pdf.label(_text(element.get_text(" ")))
    elif name == "li":
        level = len(element.find_parents(["ul", "ol"]))
        marker = "-"
        if element.parent is not None and element.parent.name == "ol":
            marker = f"{len(element.find_previous_siblings('li')) + 1}."
        pdf.list_item(_own_text(element), marker, level)
    elif name == "tr":
        cells = [_text(cell.get_text(" ")) for cell in element.find_all(["th", "td"])]
        if element.find("th"):
            pdf.label(" | ".join(cells))
        else:
            pdf.body_text(" | ".join(cells))
    elif name == "pre":
        pdf.body_text(element.get_text())
    else:
        pdf.body_text(_text(element.get_text(" ")))


def render_sop_pdf(html: str, title: str) -> bytes:
    """Render SOP HTML to PDF bytes."""
    soup = BeautifulSoup(html, "html.parser")

    pdf = AnalysisReport(heading=title)
    pdf.add_page()
    pdf.title_block(title, "Standard Operating Procedure")

    blocks = 0
    for element in soup.find_all(_SOP_BLOCKS):
        if element.find_parent(["blockquote", "pre"]):
            continue
        if element.name != "li" and element.find_parent("li"):
            continue
        _sop_block(pdf, element)
        blocks += 1
    if not blocks:
        pdf.body_text(_text(soup.get_text(" ")))

    logger.info(f"Rendered SOP PDF ({pdf.page_no()} pages) for {title}")
    return bytes(pdf.output())
