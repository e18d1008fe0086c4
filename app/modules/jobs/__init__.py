"""
Módulo de Trabajos

Trabajos realizados para clientes (alquiler de contenedores, entrega de arena,
servicio de montacargas), su máquina de estados y el vínculo con la factura.
"""

from .models import Job, JobType, JobStatus

__all__ = ["Job", "JobType", "JobStatus"]
