"""
Módulo de Clientes

Alta, consulta, búsqueda, actualización y baja lógica de clientes. El email es
único entre clientes activos; la baja se rechaza mientras el cliente tenga
trabajos activos o facturas en borrador.
"""

from .models import Customer

__all__ = ["Customer"]
