"""
Document Renderer - generación de PDF a partir de templates HTML (Jinja2 + WeasyPrint).
"""
import logging
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from app.common.exceptions import ExternalServiceError
from app.common.money import to_money
from app.core.config import settings

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"


class DocumentRenderError(ExternalServiceError):
    def __init__(self, message: str):
        super().__init__("renderer", message)


class DocumentRenderer:
    """Renderiza recibos (y cualquier template registrado) a bytes PDF."""

    def __init__(self, template_dir: Optional[Path] = None):
        self.jinja_env = Environment(
            loader=FileSystemLoader(str(template_dir or TEMPLATE_DIR)),
            autoescape=select_autoescape(['html', 'xml'])
        )
        self.jinja_env.filters["money"] = self.format_money
        self.jinja_env.filters["date"] = self.format_date

    @staticmethod
    def format_money(amount: Any) -> str:
        if amount is None:
            return "0.00"
        return f"{to_money(Decimal(str(amount))):,.2f}"

    @staticmethod
    def format_date(value: Any) -> str:
        if isinstance(value, datetime):
            return value.strftime("%d/%m/%Y")
        if isinstance(value, date):
            return value.strftime("%d/%m/%Y")
        return ""

    def render_html(self, template_name: str, context: Dict[str, Any]) -> str:
        try:
            return self.jinja_env.get_template(template_name).render(**context)
        except Exception as e:
            logger.error(f"Error rendering template {template_name}: {e}", exc_info=True)
            raise DocumentRenderError(f"No se pudo generar el documento: {e}") from e

    def render_pdf(self, template_name: str, context: Dict[str, Any]) -> bytes:
        html = self.render_html(template_name, context)
        try:
            # Import diferido: WeasyPrint carga librerías nativas (Pango/Cairo)
            from weasyprint import HTML

            pdf_bytes = HTML(string=html, base_url=str(TEMPLATE_DIR)).write_pdf()
        except Exception as e:
            logger.error(f"Error generating PDF from {template_name}: {e}", exc_info=True)
            raise DocumentRenderError(f"No se pudo generar el PDF: {e}") from e

        logger.debug(f"Rendered {template_name} ({len(pdf_bytes)} bytes)")
        return pdf_bytes

    def receipt_context(self, receipt) -> Dict[str, Any]:
        return {
            "company_name": settings.EMAIL_FROM_NAME,
            "receipt": receipt,
            "customer": receipt.customer,
            "allocations": sorted(receipt.allocations, key=lambda a: a.invoice_number or ""),
            "generated_at": datetime.now(),
        }

    def render_receipt(self, receipt) -> bytes:
        return self.render_pdf("receipt.html", self.receipt_context(receipt))
