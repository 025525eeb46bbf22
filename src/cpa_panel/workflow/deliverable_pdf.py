"""
Deliverable export.

Renders the deliverable of a completed workflow run as a PDF (ReportLab)
with an executive summary, the detailed analysis and the numbered
recommendations.
"""

import io
import logging
from datetime import datetime
from typing import Optional, Dict, Any
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_JUSTIFY
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import inch
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer

from .run_models import WorkflowRun

logger = logging.getLogger(__name__)

ACCENT_COLOR = "#1e40af"


class DeliverablePDFGenerator:
    """Builds deliverable PDFs."""

    def __init__(self):
        self._styles = getSampleStyleSheet()
        self._styles.add(ParagraphStyle(
            'DeliverableTitle',
            parent=self._styles['Title'],
            fontSize=20,
            spaceAfter=12,
        ))
        self._styles.add(ParagraphStyle(
            'Meta',
            parent=self._styles['Normal'],
            fontSize=11,
            leading=15,
        ))
        self._styles.add(ParagraphStyle(
            'SectionHeading',
            parent=self._styles['Heading2'],
            fontSize=14,
            fontName='Helvetica-Bold',
            spaceBefore=16,
            spaceAfter=8,
            textColor=colors.HexColor(ACCENT_COLOR),
        ))
        self._styles.add(ParagraphStyle(
            'Body',
            parent=self._styles['Normal'],
            fontSize=11,
            leading=15,
            alignment=TA_JUSTIFY,
            spaceAfter=8,
        ))

    def _paragraphs(self, text: str):
        for block in text.split("\n\n"):
            block = block.strip()
            if block:
                yield Paragraph(escape(block).replace("\n", "<br/>"), self._styles['Body'])

    def generate_pdf(self, run: WorkflowRun, workflow_title: Optional[str] = None) -> bytes:
        """
        Render a run's deliverable.

        Args:
            run: A run with a deliverable
            workflow_title: Title shown on the "Workflow:" line

        Returns:
            PDF bytes

        Raises:
            ValueError: If the run has no deliverable
        """
        deliverable = run.deliverable
        if deliverable is None:
            raise ValueError(f"Run {run.id} has no deliverable")

        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=letter,
            rightMargin=0.75 * inch,
            leftMargin=0.75 * inch,
            topMargin=0.75 * inch,
            bottomMargin=0.75 * inch,
            title=deliverable.title or "Workflow Deliverable",
        )

        completed = run.completed_at or run.last_updated
        story = [
            Paragraph(escape(deliverable.title or "Workflow Deliverable"), self._styles['DeliverableTitle']),
            Paragraph(f"Workflow: {escape(workflow_title or run.workflow_id)}", self._styles['Meta']),
            Paragraph(f"Completed: {_format_date(completed)}", self._styles['Meta']),
            Spacer(1, 0.25 * inch),
        ]

        if deliverable.summary:
            story.append(Paragraph("Executive Summary", self._styles['SectionHeading']))
            story.extend(self._paragraphs(deliverable.summary))

        if deliverable.content:
            story.append(Paragraph("Detailed Analysis", self._styles['SectionHeading']))
            story.extend(self._paragraphs(deliverable.content))

        if deliverable.recommendations:
            story.append(Paragraph("Recommendations", self._styles['SectionHeading']))
            for index, recommendation in enumerate(deliverable.recommendations, start=1):
                story.append(Paragraph(f"{index}. {escape(recommendation)}", self._styles['Body']))

        doc.build(story)
        pdf_bytes = buffer.getvalue()
        buffer.close()

        logger.info(f"Generated deliverable PDF for run {run.id} ({len(pdf_bytes)} bytes)")
        return pdf_bytes


def deliverable_filename(run: WorkflowRun) -> str:
    title = run.deliverable.title if run.deliverable and run.deliverable.title else "workflow-deliverable"
    safe = "".join(c if c.isalnum() or c in " -_." else "_" for c in title).strip()
    return f"{safe or 'workflow-deliverable'}.pdf"


def deliverable_json(run: WorkflowRun, workflow_title: Optional[str] = None) -> Dict[str, Any]:
    return {
        "run_id": run.id,
        "workflow_id": run.workflow_id,
        "workflow_title": workflow_title or run.workflow_id,
        "completed_at": run.completed_at.isoformat() if run.completed_at else None,
        "deliverable": run.deliverable.to_dict() if run.deliverable else None,
    }


def _format_date(value: Optional[datetime]) -> str:
    return value.strftime("%B %d, %Y") if value else "N/A"


_pdf_generator: Optional[DeliverablePDFGenerator] = None


def get_deliverable_pdf_generator() -> DeliverablePDFGenerator:
    global _pdf_generator
    if _pdf_generator is None:
        _pdf_generator = DeliverablePDFGenerator()
    return _pdf_generator
