"""
Módulo de Facturación (Invoices) - Fieldbill

Este módulo maneja la facturación de trabajos con las siguientes características:

- Creación de facturas en borrador a partir de trabajos completados sin facturar
- Una línea por trabajo con el precio congelado al facturar
- Totales: subtotal, IVA redondeado a 2 decimales y total
- Ciclo de vida: borrador -> enviada -> (entregada) -> pagada, o anulada
- Estado vencida derivado al leer (enviada con vencimiento superado)
- Numeración INV-{año}-{secuencia} sin reutilizar números eliminados

Tablas principales:
- invoices: Facturas
- invoice_line_items: Líneas de factura (una por trabajo)
"""

from .models import Invoice, InvoiceLineItem, InvoiceStatus, PaymentMethod

__all__ = [
    "Invoice", "InvoiceLineItem", "InvoiceStatus", "PaymentMethod"
]
