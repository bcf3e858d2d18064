"""
DealDesk - Document Generator

Renders the legal documents of a deal (reportlab) into UPLOADS_DIR/documents
and records them in the `documents` collection.

- vehicle_record: every deal. An unresolved party prints "Not provided" and
  is listed in missing_parties.
- bill_of_sale: wholesale deal types. Both parties must be known, otherwise
  PartyResolutionError and no file is written.
"""

import io
import logging
import re
import string
from enum import Enum
from typing import List, Dict, Any
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_JUSTIFY
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import cm
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle, HRFlowable

from dealdesk.config import Settings, OrganizationIdentity, new_id, now_utc
from dealdesk.models.deal import WHOLESALE_DEAL_TYPES
from dealdesk.services.party_resolver import (
    DocumentParties,
    KnownParty,
    Party,
    PartyResolutionError,
    resolve_document_parties,
)

logger = logging.getLogger("document_generator")

NOT_PROVIDED = "Not provided"


class DocumentKind(str, Enum):
    VEHICLE_RECORD = "vehicle_record"
    BILL_OF_SALE = "bill_of_sale"


DOCUMENT_PREFIX = {
    DocumentKind.VEHICLE_RECORD: "VR",
    DocumentKind.BILL_OF_SALE: "BOS",
}

DOCUMENT_TITLE = {
    DocumentKind.VEHICLE_RECORD: "VEHICLE RECORD",
    DocumentKind.BILL_OF_SALE: "BILL OF SALE",
}


# ==================== HELPERS ====================

def _base36(n: int) -> str:
    digits = string.digits + string.ascii_uppercase
    out = ""
    while n:
        n, r = divmod(n, 36)
        out = digits[r] + out
    return out or "0"


def safe_file_part(value) -> str:
    """Stock numbers are typed by hand ("RP/1001"); keep them path-safe."""
    return re.sub(r"[^a-zA-Z0-9.-]", "_", str(value)).strip(".") or "N_A"


def format_money(value) -> str:
    try:
        if value is None or value == "":
            return "N/A"
        return "${:,.2f}".format(float(value))
    except (TypeError, ValueError):
        return "N/A"


def documents_for_deal(deal: dict) -> List[DocumentKind]:
    kinds = [DocumentKind.VEHICLE_RECORD]
    if (deal.get("deal_type") or "").lower() in WHOLESALE_DEAL_TYPES:
        kinds.append(DocumentKind.BILL_OF_SALE)
    return kinds


def price_line(deal: dict):
    """(label, value) printed on documents. Sales print the wholesale/sale price."""
    if (deal.get("deal_subtype") or "").lower() == "sale":
        return "Sale Price", deal.get("wholesale_price") or deal.get("sale_price") or deal.get("purchase_price")
    return "Purchase Price", deal.get("purchase_price")


def _party_rows(party: Party) -> list:
    if isinstance(party, KnownParty):
        return [
            ["Name", party.name, "License #", party.license_number or "N/A"],
            ["Phone", party.phone or "N/A", "Email", party.email or "N/A"],
            ["Address", party.address or "N/A", "Tier", party.tier or "N/A"],
        ]
    return [["Name", NOT_PROVIDED, "", ""]]


def _styles():
    styles = getSampleStyleSheet()
    styles.add(ParagraphStyle('DocTitle', parent=styles['Title'], fontSize=15, spaceAfter=4,
                              textColor=colors.HexColor('#1a1a2e')))
    styles.add(ParagraphStyle('OrgName', fontSize=12, fontName='Helvetica-Bold',
                              textColor=colors.HexColor('#1a1a2e')))
    styles.add(ParagraphStyle('OrgInfo', fontSize=8, textColor=colors.HexColor('#666666')))
    styles.add(ParagraphStyle('SectionTitle', fontSize=10, fontName='Helvetica-Bold',
                              textColor=colors.HexColor('#1a1a2e'), spaceBefore=8, spaceAfter=4))
    styles.add(ParagraphStyle('Body', parent=styles['Normal'], fontSize=9, leading=12, alignment=TA_JUSTIFY))
    styles.add(ParagraphStyle('Footer', fontSize=7, textColor=colors.HexColor('#999999'), alignment=TA_CENTER))
    return styles


def _grid(rows, col_widths=(70, 170, 70, 170)) -> Table:
    table = Table(rows, colWidths=list(col_widths))
    table.setStyle(TableStyle([
        ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
        ('FONTNAME', (2, 0), (2, -1), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), 8),
        ('TEXTCOLOR', (0, 0), (0, -1), colors.HexColor('#666666')),
        ('TEXTCOLOR', (2, 0), (2, -1), colors.HexColor('#666666')),
        ('BOTTOMPADDING', (0, 0), (-1, -1), 3),
        ('TOPPADDING', (0, 0), (-1, -1), 3),
        ('LINEBELOW', (0, 0), (-1, -2), 0.5, colors.HexColor('#e0e0e0')),
    ]))
    return table


def _vehicle_rows(deal: dict) -> list:
    mileage = deal.get("mileage")
    return [
        ["Year", str(deal.get("year") or "N/A"), "Make", deal.get("make") or "N/A"],
        ["Model", deal.get("model") or "N/A", "VIN", deal.get("vin") or "N/A"],
        ["Stock #", deal.get("stock_number") or "N/A", "Color", deal.get("color") or "N/A"],
        ["Mileage", f"{mileage:,}" if isinstance(mileage, int) else "N/A", "", ""],
    ]


def _build_pdf(kind: DocumentKind, deal: dict, parties: DocumentParties,
               document_number: str, organization: OrganizationIdentity) -> bytes:
    buf = io.BytesIO()
    doc = SimpleDocTemplate(buf, pagesize=letter,
                            topMargin=1.5 * cm, bottomMargin=1.5 * cm,
                            leftMargin=1.8 * cm, rightMargin=1.8 * cm)
    styles = _styles()
    story = []

    # ─── HEADER ───
    story.append(Paragraph(escape(organization.name), styles['OrgName']))
    org_info = f"{organization.address} · {organization.phone} · Dealer License {organization.license_number}"
    story.append(Paragraph(escape(org_info), styles['OrgInfo']))
    story.append(HRFlowable(width="100%", thickness=2, color=colors.HexColor('#1a1a2e'), spaceAfter=6))
    story.append(Paragraph(DOCUMENT_TITLE[kind], styles['DocTitle']))
    story.append(Paragraph(f"Document #: {escape(document_number)}", styles['OrgInfo']))
    story.append(Spacer(1, 6))

    # ─── VEHICLE ───
    story.append(Paragraph("VEHICLE", styles['SectionTitle']))
    story.append(_grid(_vehicle_rows(deal)))

    # ─── PARTIES ───
    story.append(Paragraph("SELLER", styles['SectionTitle']))
    story.append(_grid(_party_rows(parties.seller)))
    story.append(Paragraph("BUYER", styles['SectionTitle']))
    story.append(_grid(_party_rows(parties.buyer)))

    # ─── PRICE ───
    label, value = price_line(deal)
    story.append(Paragraph("TERMS", styles['SectionTitle']))
    story.append(_grid([[label, format_money(value), "Deal Type", deal.get("deal_type") or "N/A"]]))

    if kind == DocumentKind.BILL_OF_SALE:
        story.append(Spacer(1, 8))
        story.append(Paragraph(
            f"For the price stated above, <b>{escape(parties.seller.name)}</b> sells and transfers the vehicle "
            f"described above to <b>{escape(parties.buyer.name)}</b>. The seller warrants that it holds good title "
            f"to the vehicle, free of liens except as disclosed to the buyer in writing.",
            styles['Body']
        ))

    # ─── SIGNATURES ───
    story.append(Spacer(1, 24))
    seller_name = parties.seller.name if isinstance(parties.seller, KnownParty) else NOT_PROVIDED
    buyer_name = parties.buyer.name if isinstance(parties.buyer, KnownParty) else NOT_PROVIDED
    signatures = Table(
        [["_____________________________", "_____________________________"],
         [f"Seller: {seller_name}", f"Buyer: {buyer_name}"]],
        colWidths=[240, 240]
    )
    signatures.setStyle(TableStyle([('FONTSIZE', (0, 0), (-1, -1), 8), ('ALIGN', (0, 0), (-1, -1), 'CENTER')]))
    story.append(signatures)

    story.append(Spacer(1, 16))
    story.append(Paragraph(f"Generated by {escape(organization.name)} back office", styles['Footer']))

    doc.build(story)
    return buf.getvalue()


def render_document(kind: DocumentKind, deal: dict, parties: DocumentParties,
                    document_number: str, organization: OrganizationIdentity) -> bytes:
    """PDF bytes for one document. Bills of sale require both parties."""
    if kind == DocumentKind.BILL_OF_SALE:
        parties.require_known()
    return _build_pdf(kind, deal, parties, document_number, organization)


# ==================== GENERATION ====================

async def generate_deal_documents(db, deal: dict, settings: Settings) -> Dict[str, Any]:
    """
    Generates every document the deal calls for.

    Returns: {"documents": [records], "errors": [{"kind", "error", "missing"}]}
    """
    parties = await resolve_document_parties(db, deal, settings.organization)

    out_dir = settings.uploads_dir / "documents"
    out_dir.mkdir(parents=True, exist_ok=True)

    stock = deal.get("stock_number") or deal.get("vin") or "N_A"
    rendered, documents, errors = [], [], []

    # Render everything first: a failing render leaves no file and no record behind
    for kind in documents_for_deal(deal):
        now = now_utc()
        millis = int(now.timestamp() * 1000)
        document_number = f"{DOCUMENT_PREFIX[kind]}-{stock}-{_base36(millis)}"
        try:
            pdf = render_document(kind, deal, parties, document_number, settings.organization)
        except PartyResolutionError as e:
            logger.warning(f"[DOC GEN] {kind.value} skipped for deal {deal.get('id')}: {e}")
            errors.append({
                "kind": kind.value,
                "error": str(e),
                "missing": [p.role for p in e.missing],
            })
            continue
        rendered.append((kind, now, millis, document_number, pdf))

    for kind, now, millis, document_number, pdf in rendered:
        file_name = f"{kind.value}_{safe_file_part(stock)}_{millis}.pdf"
        (out_dir / file_name).write_bytes(pdf)

        record = {
            "id": new_id(),
            "deal_id": deal.get("id"),
            "vin": deal.get("vin"),
            "kind": kind.value,
            "file_name": file_name,
            "file_size": len(pdf),
            "document_number": document_number,
            "missing_parties": [p.role for p in parties.missing],
            "created_at": now.isoformat(),
        }
        await db.documents.insert_one(record)
        record.pop("_id", None)
        documents.append(record)
        logger.info(f"[DOC GEN] {kind.value} {document_number} written for deal {deal.get('id')}")

    return {"documents": documents, "errors": errors}
