"""
Generación de documentos PDF (recibos).
"""

from .renderer import DocumentRenderer, DocumentRenderError

__all__ = ["DocumentRenderer", "DocumentRenderError"]
