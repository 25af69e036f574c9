from __future__ import annotations

import unicodedata
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple, Union


class EstadoSesion(str, Enum):
    """Estados posibles de una sesión.

    El motor solo deriva BORRADOR o PLANIFICADA; el resto se alcanza por
    transiciones manuales (suspensión, cancelación, cierre).
    """

    BORRADOR = "BORRADOR"
    PLANIFICADA = "PLANIFICADA"
    SUSPENDIDA = "SUSPENDIDA"
    CANCELADA = "CANCELADA"
    FINALIZADA = "FINALIZADA"


ESTADOS_MANUALES = frozenset(
    {EstadoSesion.SUSPENDIDA, EstadoSesion.CANCELADA, EstadoSesion.FINALIZADA}
)
# Estados manuales a los que se puede ir desde BORRADOR y volver.
ESTADOS_TRANSICION_BORRADOR = frozenset({EstadoSesion.SUSPENDIDA, EstadoSesion.CANCELADA})

_ALIAS_ESTADOS = {
    "DRAFT": EstadoSesion.BORRADOR,
    "PLANNED": EstadoSesion.PLANIFICADA,
    "SUSPENDED": EstadoSesion.SUSPENDIDA,
    "CANCELLED": EstadoSesion.CANCELADA,
    "CANCELED": EstadoSesion.CANCELADA,
    "FINISHED": EstadoSesion.FINALIZADA,
}


@dataclass(frozen=True)
class EstadoDerivado:
    """El estado se calcula con `derivar_estado`."""


@dataclass(frozen=True)
class EstadoForzado:
    """El llamador impone un estado concreto (p. ej. filas de importación)."""

    estado: EstadoSesion


ArgumentoEstado = Union[EstadoDerivado, EstadoForzado]


def normalizar_estado(valor: object) -> Optional[EstadoSesion]:
    """Convierte texto libre en `EstadoSesion`.

    Acepta los nombres en castellano y sus equivalentes en inglés, sin
    distinguir mayúsculas. Devuelve None si el valor está vacío o no se
    reconoce.
    """
    if valor is None:
        return None
    if isinstance(valor, EstadoSesion):
        return valor
    texto = str(valor).strip().upper()
    if not texto:
        return None
    if texto in EstadoSesion.__members__:
        return EstadoSesion[texto]
    return _ALIAS_ESTADOS.get(texto)


def rangos_solapan(
    existente_inicio: Optional[datetime],
    existente_fin: Optional[datetime],
    candidato_inicio: Optional[datetime],
    candidato_fin: Optional[datetime],
) -> bool:
    """
    Solapamiento inclusivo entre dos rangos [inicio, fin].

    Los extremos que se tocan cuentan como solapados: una sesión que acaba
    a las 12:00 choca con otra que empieza a las 12:00. Si a cualquiera de
    los dos rangos le falta un extremo, no hay conflicto posible.
    """
    if None in (existente_inicio, existente_fin, candidato_inicio, candidato_fin):
        return False
    return existente_inicio <= candidato_fin and existente_fin >= candidato_inicio


def normalizar_sede(valor: Optional[str]) -> Optional[str]:
    """Etiqueta de sede sin tildes, en minúsculas y sin espacios extremos."""
    if valor is None:
        return None
    texto = str(valor).strip()
    if not texto:
        return None
    sin_tildes = unicodedata.normalize("NFD", texto)
    sin_tildes = "".join(c for c in sin_tildes if unicodedata.category(c) != "Mn")
    return " ".join(sin_tildes.lower().split())


def sede_requiere_sala(sede: Optional[str], etiquetas_in_company: Iterable[str]) -> bool:
    """Una sede "in company" no necesita sala física; el resto sí."""
    normalizada = normalizar_sede(sede)
    exentas = {normalizar_sede(e) for e in etiquetas_in_company}
    return normalizada not in exentas


def derivar_estado(
    sede_requiere_sala: bool,
    sala_id: Optional[str],
    formador_ids: Sequence[str],
    unidad_ids: Sequence[str],
    inicio: Optional[datetime],
    fin: Optional[datetime],
) -> EstadoSesion:
    """
    Estado automático de una sesión a partir de sus recursos y fechas.

    Reglas en orden:
    1. Sede con sala obligatoria y sin sala -> BORRADOR.
    2. Sin formadores -> BORRADOR.
    3. Sin unidades móviles -> BORRADOR.
    4. Inicio y fin presentes -> PLANIFICADA.
    5. En otro caso -> BORRADOR.
    """
    if sede_requiere_sala and not (sala_id and str(sala_id).strip()):
        return EstadoSesion.BORRADOR
    if not formador_ids:
        return EstadoSesion.BORRADOR
    if not unidad_ids:
        return EstadoSesion.BORRADOR
    if inicio is not None and fin is not None:
        return EstadoSesion.PLANIFICADA
    return EstadoSesion.BORRADOR


def resolver_estado(
    argumento: ArgumentoEstado,
    *,
    estado_actual: Optional[EstadoSesion] = None,
    sede_requiere_sala: bool,
    sala_id: Optional[str],
    formador_ids: Sequence[str],
    unidad_ids: Sequence[str],
    inicio: Optional[datetime],
    fin: Optional[datetime],
) -> EstadoSesion:
    """Aplica el argumento de estado sin degradar nunca un estado manual."""
    if isinstance(argumento, EstadoForzado):
        return argumento.estado
    if estado_actual in ESTADOS_MANUALES:
        return estado_actual
    return derivar_estado(sede_requiere_sala, sala_id, formador_ids, unidad_ids, inicio, fin)


def motivo_cambio_estado_rechazado(
    actual: EstadoSesion, solicitado: EstadoSesion, automatico: EstadoSesion
) -> Optional[str]:
    """
    Valida un cambio de estado pedido sobre una sesión ya existente.

    Devuelve el motivo del rechazo, o None si el cambio es válido:
    - Un estado no manual solo puede pedirse si coincide con el automático
      (salvo volver a BORRADOR desde SUSPENDIDA o CANCELADA).
    - Para pasar a un estado manual la sesión debe estar planificada, salvo
      desde BORRADOR hacia SUSPENDIDA o CANCELADA.
    """
    desde_borrador = actual == EstadoSesion.BORRADOR and solicitado in ESTADOS_TRANSICION_BORRADOR
    hacia_borrador = solicitado == EstadoSesion.BORRADOR and actual in ESTADOS_TRANSICION_BORRADOR
    if solicitado not in ESTADOS_MANUALES and not hacia_borrador and solicitado != automatico:
        return "Estado no editable"
    if (
        solicitado in ESTADOS_MANUALES
        and actual not in ESTADOS_MANUALES
        and not desde_borrador
        and automatico != EstadoSesion.PLANIFICADA
    ):
        return "La sesión debe estar planificada para cambiar el estado"
    return None


def construir_nombre_base(
    nombre: Optional[str], codigo: Optional[str], fallback: str = "Sesión"
) -> str:
    for candidato in (nombre, codigo):
        if candidato is not None and str(candidato).strip():
            return str(candidato).strip()
    return fallback


def nombre_secuencial(base: str, posicion: int) -> str:
    return f"{base} - Sesión {posicion}"


def asignar_nombres(base: str, sesion_ids: Sequence[str]) -> List[Tuple[str, str]]:
    """Pares (sesion_id, nombre) numerados desde 1 en el orden recibido."""
    return [(sid, nombre_secuencial(base, idx)) for idx, sid in enumerate(sesion_ids, start=1)]
