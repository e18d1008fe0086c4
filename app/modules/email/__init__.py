"""
Módulo de email para Fieldbill.
"""

from .service import EmailService, EmailMessage, EmailResult, EmailDeliveryError

__all__ = [
    'EmailService',
    'EmailMessage',
    'EmailResult',
    'EmailDeliveryError'
]
