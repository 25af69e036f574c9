"""
Errores de dominio del motor de sesiones.

Todos heredan de ValueError para que los Gerentes los propaguen igual que
los errores de validación, y cada uno lleva su código y el status HTTP con
el que el Director lo expone.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict


class CodigoError(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    RESOURCE_UNAVAILABLE = "RESOURCE_UNAVAILABLE"
    UNEXPECTED = "UNEXPECTED"


class ErrorSesion(ValueError):
    codigo: CodigoError = CodigoError.UNEXPECTED
    http_status: int = 500

    def __init__(self, mensaje: str) -> None:
        super().__init__(mensaje)
        self.mensaje = mensaje

    def to_dict(self) -> Dict[str, str]:
        return {"code": self.codigo.value, "message": self.mensaje}


class ErrorValidacion(ErrorSesion):
    codigo = CodigoError.VALIDATION_ERROR
    http_status = 400


class ErrorNoEncontrado(ErrorSesion):
    codigo = CodigoError.NOT_FOUND
    http_status = 404


class ErrorRecursoNoDisponible(ErrorSesion):
    codigo = CodigoError.RESOURCE_UNAVAILABLE
    http_status = 409

    def __init__(
        self,
        mensaje: str = "Alguno de los recursos ya está ocupado en ese rango de fechas.",
    ) -> None:
        super().__init__(mensaje)
