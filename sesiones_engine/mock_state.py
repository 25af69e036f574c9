"""
Memoria simulada de presupuestos, catálogos de recursos y sesiones.

Este módulo hace de repositorio para el motor: expone las consultas y
escrituras que usan los Gerentes y una transacción en memoria.

Notas de diseño:
- Las fechas se almacenan en UTC (datetime aware).
- Un único candado reentrante protege lecturas y escrituras; `transaccion()`
  lo mantiene durante todo el bloque, de modo que el chequeo de solapamiento
  y la escritura posterior se ejecutan de forma serializable.
- Si el bloque de `transaccion()` lanza, se restaura la foto previa de
  sesiones y asignaciones (rollback).

IMPORTANTE: En producción esto se reemplaza por la base de datos real con
nivel de aislamiento serializable.
"""

from __future__ import annotations

import copy
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Sequence

import pendulum

from .engine.engine import EstadoSesion, normalizar_estado, rangos_solapan
from .mock_db import get_catalogo


_lock = threading.RLock()


@dataclass
class Deal:
    deal_id: str
    training_address: Optional[str] = None
    sede_label: Optional[str] = None


@dataclass
class DealProduct:
    id: str
    deal_id: str
    name: Optional[str] = None
    code: Optional[str] = None


@dataclass
class Sesion:
    """Sesión persistida.

    `orden` es un contador monótono de creación; junto con `sesion_id` fija el
    orden estable de las sesiones hermanas.
    """

    sesion_id: str
    deal_id: str
    deal_product_id: str
    nombre_cache: str
    direccion: str
    estado: EstadoSesion
    inicio: Optional[datetime]
    fin: Optional[datetime]
    sala_id: Optional[str]
    creada_en: datetime
    orden: int


@dataclass
class AsignacionFormador:
    sesion_id: str
    formador_id: str


@dataclass
class AsignacionUnidad:
    sesion_id: str
    unidad_id: str


MOCK_DEALS: Dict[str, Deal] = {}
MOCK_PRODUCTOS: Dict[str, DealProduct] = {}
MOCK_SALAS: List[str] = []
MOCK_FORMADORES: List[str] = []
MOCK_UNIDADES: List[str] = []
MOCK_SESIONES: List[Sesion] = []
MOCK_ASIG_FORMADORES: List[AsignacionFormador] = []
MOCK_ASIG_UNIDADES: List[AsignacionUnidad] = []
# Nombre base elegido al renombrar, por producto.
MOCK_NOMBRES_BASE: Dict[str, str] = {}

_secuencia = 0


def _a_utc(valor: Any) -> Optional[datetime]:
    if valor is None or valor == "":
        return None
    if isinstance(valor, datetime):
        return pendulum.instance(valor).in_timezone("UTC")
    return pendulum.parse(str(valor)).in_timezone("UTC")


def reset_state(catalogo: Optional[Dict[str, Any]] = None) -> None:
    """Vacía la memoria y carga el catálogo indicado (o el de `mock_db`).

    El catálogo sigue el formato de los escenarios: deals, productos, salas,
    formadores, unidades y, opcionalmente, sesiones ya reservadas.
    """
    global _secuencia
    catalogo = catalogo if catalogo is not None else get_catalogo()
    with _lock:
        MOCK_DEALS.clear()
        MOCK_PRODUCTOS.clear()
        MOCK_SALAS[:] = []
        MOCK_FORMADORES[:] = []
        MOCK_UNIDADES[:] = []
        MOCK_SESIONES[:] = []
        MOCK_ASIG_FORMADORES[:] = []
        MOCK_ASIG_UNIDADES[:] = []
        MOCK_NOMBRES_BASE.clear()
        _secuencia = 0

        for d in catalogo.get("deals", []) or []:
            deal = Deal(
                deal_id=str(d["deal_id"]),
                training_address=d.get("training_address"),
                sede_label=d.get("sede_label"),
            )
            MOCK_DEALS[deal.deal_id] = deal
        for p in catalogo.get("productos", []) or []:
            prod = DealProduct(
                id=str(p["id"]),
                deal_id=str(p["deal_id"]),
                name=p.get("name"),
                code=p.get("code"),
            )
            MOCK_PRODUCTOS[prod.id] = prod
        MOCK_SALAS.extend(str(s) for s in catalogo.get("salas", []) or [])
        MOCK_FORMADORES.extend(str(f) for f in catalogo.get("formadores", []) or [])
        MOCK_UNIDADES.extend(str(u) for u in catalogo.get("unidades", []) or [])

        for s in catalogo.get("sesiones", []) or []:
            creada = create_session(
                deal_id=str(s["deal_id"]),
                deal_product_id=str(s["deal_product_id"]),
                nombre_cache=s.get("nombre_cache") or "",
                direccion=s.get("direccion") or "",
                estado=normalizar_estado(s.get("estado")) or EstadoSesion.BORRADOR,
                inicio=_a_utc(s.get("inicio")),
                fin=_a_utc(s.get("fin")),
                sala_id=s.get("sala_id"),
                sesion_id=s.get("sesion_id"),
            )
            create_trainer_assignments(creada.sesion_id, s.get("formador_ids", []) or [])
            create_mobile_unit_assignments(creada.sesion_id, s.get("unidad_ids", []) or [])


@contextmanager
def transaccion() -> Iterator[None]:
    """Bloque atómico: mantiene el candado y revierte si algo falla."""
    global _secuencia
    with _lock:
        foto = (
            copy.deepcopy(MOCK_SESIONES),
            copy.deepcopy(MOCK_ASIG_FORMADORES),
            copy.deepcopy(MOCK_ASIG_UNIDADES),
            dict(MOCK_NOMBRES_BASE),
            _secuencia,
        )
        try:
            yield
        except BaseException:
            MOCK_SESIONES[:] = foto[0]
            MOCK_ASIG_FORMADORES[:] = foto[1]
            MOCK_ASIG_UNIDADES[:] = foto[2]
            MOCK_NOMBRES_BASE.clear()
            MOCK_NOMBRES_BASE.update(foto[3])
            _secuencia = foto[4]
            raise


# Catálogo de recursos

def list_room_ids() -> List[str]:
    return list(MOCK_SALAS)


def list_trainer_ids() -> List[str]:
    return list(MOCK_FORMADORES)


def list_unit_ids() -> List[str]:
    return list(MOCK_UNIDADES)


# Presupuestos y productos

def get_deal(deal_id: str) -> Optional[Deal]:
    return MOCK_DEALS.get(deal_id)


def find_product(deal_id: str, candidatos: Sequence[str]) -> Optional[DealProduct]:
    """Busca un producto del deal cuyo id o código coincida con algún candidato."""
    buscados = [c for c in candidatos if c]
    for prod in MOCK_PRODUCTOS.values():
        if prod.deal_id != deal_id:
            continue
        if prod.id in buscados or (prod.code is not None and prod.code in buscados):
            return prod
    return None


def get_product(product_id: str) -> Optional[DealProduct]:
    return MOCK_PRODUCTOS.get(product_id)


def get_product_base_name(product_id: str) -> Optional[str]:
    return MOCK_NOMBRES_BASE.get(product_id)


def set_product_base_name(product_id: str, nombre_base: str) -> None:
    with _lock:
        MOCK_NOMBRES_BASE[product_id] = nombre_base


# Sesiones

def list_sesiones() -> List[Sesion]:
    """Devuelve una copia superficial de las sesiones actuales."""
    return list(MOCK_SESIONES)


def get_session(sesion_id: str) -> Optional[Sesion]:
    return next((s for s in MOCK_SESIONES if s.sesion_id == sesion_id), None)


def trainer_ids_for(sesion_id: str) -> List[str]:
    return [a.formador_id for a in MOCK_ASIG_FORMADORES if a.sesion_id == sesion_id]


def unit_ids_for(sesion_id: str) -> List[str]:
    return [a.unidad_id for a in MOCK_ASIG_UNIDADES if a.sesion_id == sesion_id]


def find_sessions_for_product(deal_product_id: str) -> List[Sesion]:
    """Sesiones hermanas en orden de creación (desempate por id)."""
    hermanas = [s for s in MOCK_SESIONES if s.deal_product_id == deal_product_id]
    return sorted(hermanas, key=lambda s: (s.orden, s.sesion_id))


def find_overlapping(
    *,
    formador_ids: Sequence[str],
    sala_ids: Sequence[str],
    unidad_ids: Sequence[str],
    inicio: Optional[datetime],
    fin: Optional[datetime],
    excluir_sesion_id: Optional[str] = None,
) -> List[Sesion]:
    """Sesiones con fechas que solapan [inicio, fin] y comparten algún recurso.

    Solapamiento inclusivo: `s.inicio <= fin and s.fin >= inicio`.
    """
    if inicio is None or fin is None:
        return []
    formadores = set(formador_ids or [])
    salas = set(sala_ids or [])
    unidades = set(unidad_ids or [])
    if not (formadores or salas or unidades):
        return []

    res: List[Sesion] = []
    for s in MOCK_SESIONES:
        if excluir_sesion_id and s.sesion_id == excluir_sesion_id:
            continue
        if not rangos_solapan(s.inicio, s.fin, inicio, fin):
            continue
        if s.sala_id and s.sala_id in salas:
            res.append(s)
            continue
        if formadores & set(trainer_ids_for(s.sesion_id)):
            res.append(s)
            continue
        if unidades & set(unit_ids_for(s.sesion_id)):
            res.append(s)
    return res


def create_session(
    *,
    deal_id: str,
    deal_product_id: str,
    nombre_cache: str,
    direccion: str,
    estado: EstadoSesion,
    inicio: Optional[datetime],
    fin: Optional[datetime],
    sala_id: Optional[str],
    sesion_id: Optional[str] = None,
) -> Sesion:
    global _secuencia
    with _lock:
        _secuencia += 1
        sesion = Sesion(
            sesion_id=sesion_id or str(uuid.uuid4()),
            deal_id=deal_id,
            deal_product_id=deal_product_id,
            nombre_cache=nombre_cache,
            direccion=direccion,
            estado=estado,
            inicio=inicio,
            fin=fin,
            sala_id=sala_id,
            creada_en=datetime.now(timezone.utc),
            orden=_secuencia,
        )
        MOCK_SESIONES.append(sesion)
        return sesion


def update_session(sesion_id: str, **campos: Any) -> Optional[Sesion]:
    """Actualiza campos de una sesión existente. Si no se encuentra, retorna None."""
    with _lock:
        sesion = get_session(sesion_id)
        if sesion is None:
            return None
        for nombre, valor in campos.items():
            if not hasattr(sesion, nombre):
                raise AttributeError(f"Campo de sesión desconocido: {nombre}")
            setattr(sesion, nombre, valor)
        return sesion


def create_trainer_assignments(sesion_id: str, formador_ids: Sequence[str]) -> List[AsignacionFormador]:
    with _lock:
        nuevas = [AsignacionFormador(sesion_id=sesion_id, formador_id=f) for f in formador_ids]
        MOCK_ASIG_FORMADORES.extend(nuevas)
        return nuevas


def create_mobile_unit_assignments(sesion_id: str, unidad_ids: Sequence[str]) -> List[AsignacionUnidad]:
    with _lock:
        nuevas = [AsignacionUnidad(sesion_id=sesion_id, unidad_id=u) for u in unidad_ids]
        MOCK_ASIG_UNIDADES.extend(nuevas)
        return nuevas


def delete_trainer_assignments(sesion_id: str) -> None:
    with _lock:
        MOCK_ASIG_FORMADORES[:] = [a for a in MOCK_ASIG_FORMADORES if a.sesion_id != sesion_id]


def delete_mobile_unit_assignments(sesion_id: str) -> None:
    with _lock:
        MOCK_ASIG_UNIDADES[:] = [a for a in MOCK_ASIG_UNIDADES if a.sesion_id != sesion_id]


def rename_session(sesion_id: str, nombre: str) -> Optional[Sesion]:
    return update_session(sesion_id, nombre_cache=nombre)


reset_state()
