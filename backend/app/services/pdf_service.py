"""
Service per la generazione di PDF con WeasyPrint + Jinja2.
Progetto: ISP Billing (Gestionale ISP)

Esporta le fatture emesse in PDF nella cartella documenti configurata
e restituisce il riferimento salvato in Invoice.document_url.
"""

import asyncio
import logging
import os
from datetime import date

from jinja2 import Environment, FileSystemLoader, select_autoescape

from app.core.config import Settings
from app.models.invoice import Invoice, Payment

logger = logging.getLogger(__name__)

# Path alle cartelle templates
BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
TEMPLATES_DIR = os.path.join(BASE_DIR, "templates")

# Lazy import of weasyprint to avoid startup errors if GTK libraries aren't available
def _get_weasyprint():
    """Lazy import of weasyprint to handle missing system libraries gracefully."""
    try:
        from weasyprint import HTML, CSS
        return HTML, CSS
    except OSError as e:
        raise RuntimeError(
            "Librerie di sistema per WeasyPrint non trovate (pango/cairo)"
        ) from e

class InvoicePdfExporter:
    """
    Genera PDF da template HTML/CSS usando WeasyPrint + Jinja2.

    Il chiamante è responsabile di passare un Invoice con customer
    e line_items già caricati.
    """

    def __init__(self, settings: Settings, templates_dir: str = TEMPLATES_DIR):
        self.settings = settings
        self.templates_dir = templates_dir
        self.env = Environment(
            loader=FileSystemLoader(templates_dir),
            autoescape=select_autoescape(["html"]),
        )

    def render_invoice_html(self, invoice: Invoice) -> str:
        """Rende il template HTML della fattura."""
        template = self.env.get_template("invoice_template.html")
        customer = invoice.customer
        context = {
            # Dati ISP (da settings)
            "company_name": self.settings.invoice_company_name,
            "company_address": self.settings.invoice_address,
            "company_phone": self.settings.invoice_phone,
            "company_email": self.settings.invoice_email,
            "currency": self.settings.currency,

            "invoice": invoice,
            "customer": customer,
            "package": getattr(customer, "package", None),
            "line_items": list(invoice.line_items),
            "printed_on": date.today().strftime("%d/%m/%Y"),
        }
        return template.render(context)

    def generate_invoice_pdf(self, invoice: Invoice) -> bytes:
        """
        Genera il PDF di una fattura.

        Returns:
            bytes: PDF binario pronto per il download
        """
        HTML, CSS = _get_weasyprint()

        html_out = self.render_invoice_html(invoice)
        css = CSS(filename=os.path.join(self.templates_dir, "invoice_style.css"))

        return HTML(string=html_out, base_url=self.templates_dir).write_pdf(stylesheets=[css])

    def render_receipt_html(self, payment: Payment) -> str:
        """Rende il template HTML della ricevuta di un pagamento o rimborso."""
        template = self.env.get_template("receipt_template.html")
        context = {
            "company_name": self.settings.invoice_company_name,
            "company_address": self.settings.invoice_address,
            "company_phone": self.settings.invoice_phone,
            "company_email": self.settings.invoice_email,
            "currency": self.settings.currency,

            "payment": payment,
            "customer": payment.customer,
            "invoice": payment.invoice,
            "printed_on": date.today().strftime("%d/%m/%Y"),
        }
        return template.render(context)

    def generate_receipt_pdf(self, payment: Payment) -> bytes:
        """Genera il PDF della ricevuta (stesso foglio di stile della fattura)."""
        HTML, CSS = _get_weasyprint()

        html_out = self.render_receipt_html(payment)
        css = CSS(filename=os.path.join(self.templates_dir, "invoice_style.css"))

        return HTML(string=html_out, base_url=self.templates_dir).write_pdf(stylesheets=[css])

    def _write_pdf(self, invoice: Invoice) -> str:
        pdf_bytes = self.generate_invoice_pdf(invoice)
        os.makedirs(self.settings.export_dir, exist_ok=True)
        path = os.path.join(self.settings.export_dir, f"{invoice.invoice_number}.pdf")
        with open(path, "wb") as fh:
            fh.write(pdf_bytes)
        return path

    async def export_document(self, invoice: Invoice) -> str:
        """
        Esporta la fattura in PDF su disco.

        WeasyPrint è bloccante: il rendering gira in un thread separato.

        Returns:
            Percorso del file generato
        """
        path = await asyncio.to_thread(self._write_pdf, invoice)
        logger.info(f"Fattura {invoice.invoice_number} esportata in {path}")
        return path
