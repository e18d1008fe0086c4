"""
Módulo de Recibos

Agrupa facturas pagadas de un cliente en un recibo numerado REC-{año}-{secuencia},
genera su PDF y lo envía por email.

Tablas principales:
- receipts: Recibos
- receipt_invoices: Asignación de facturas a recibos
"""

from .models import Receipt, ReceiptInvoice

__all__ = ["Receipt", "ReceiptInvoice"]
