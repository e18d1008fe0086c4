"""
Numeración secuencial de documentos por tipo y año.
"""

from .models import DocumentSequence, DocumentKind

__all__ = ["DocumentSequence", "DocumentKind"]
