"""
Certificate rendering for finalized CofO applications.

Builds the certificate PDF with reportlab and stores it through the storage
service. Called after the finalization commit; the workflow treats any
failure here as a warning, the certificate can be regenerated later.
"""
from __future__ import annotations

import io
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from xml.sax.saxutils import escape

from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer

from app.core.config import settings
from app.core.logger import logger
from app.services.storage_service import storage_service

TERMS = [
    "The holder shall pay the prescribed ground rent as and when due.",
    "The land shall be used only for the purpose stated in this certificate.",
    "No transfer, mortgage or sublease may be made without the consent of the Governor.",
    "This certificate is subject to the provisions of the Land Use Act.",
]


@dataclass
class CertificateData:
    application_number: str
    case_number: str
    holder_name: str
    holder_email: str
    jurisdiction_name: str
    land_address: str
    plot_number: Optional[str]
    square_meters: Optional[int]
    purpose: Optional[str]
    signed_at: datetime
    signed_by: str
    signature_url: Optional[str]


class CertificateService:

    def build_pdf(self, data: CertificateData) -> bytes:
        buf = io.BytesIO()
        doc = SimpleDocTemplate(
            buf,
            pagesize=A4,
            leftMargin=2.5 * cm,
            rightMargin=2.5 * cm,
            topMargin=2.0 * cm,
            bottomMargin=2.0 * cm,
            title=f"Certificate of Occupancy {data.case_number}",
        )
        styles = getSampleStyleSheet()
        centered = ParagraphStyle("Centered", parent=styles["Normal"], alignment=TA_CENTER)
        heading = ParagraphStyle("CertTitle", parent=styles["Title"], fontSize=18, spaceAfter=12)

        def para(text: str, style=styles["Normal"]) -> Paragraph:
            return Paragraph(escape(text), style)

        story = [
            para(f"GOVERNMENT OF {data.jurisdiction_name.upper()}", centered),
            Spacer(1, 12),
            para("CERTIFICATE OF OCCUPANCY", heading),
            para(f"Certificate No: {data.case_number}"),
            para(f"Application No: {data.application_number}"),
            para(f"Date: {data.signed_at:%d %B %Y}"),
            Spacer(1, 12),
            para(
                f"This is to certify that {data.holder_name} ({data.holder_email}) is granted a "
                f"right of occupancy over the land described below."
            ),
            Spacer(1, 8),
            para(f"Address: {data.land_address}"),
            para(f"Plot number: {data.plot_number or 'N/A'}"),
            para(f"Area: {data.square_meters or 'N/A'} square meters"),
            para(f"Purpose: {data.purpose or 'N/A'}"),
            Spacer(1, 12),
            para("Terms and conditions", styles["Heading3"]),
        ]
        for i, term in enumerate(TERMS, start=1):
            story.append(para(f"{i}. {term}"))
        story.extend([
            Spacer(1, 24),
            para(f"Signed: {data.signed_by}"),
            para("GOVERNOR"),
        ])
        if data.signature_url:
            story.append(para(f"Signature on file: {data.signature_url}"))

        doc.build(story)
        return buf.getvalue()

    def render(self, data: CertificateData) -> str:
        pdf = self.build_pdf(data)
        stored = storage_service.store(
            pdf,
            f"{data.case_number}.pdf",
            "application/pdf",
            settings.CERTIFICATE_FOLDER,
        )
        logger.info("certificate_rendered case_number=%s url=%s", data.case_number, stored.url)
        return stored.url


certificate_service = CertificateService()
