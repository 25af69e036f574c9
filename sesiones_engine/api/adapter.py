from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pendulum

from sesiones_engine import mock_state as mock_state
from sesiones_engine.config import ConfiguracionImportacion, get_settings
from sesiones_engine.engine.engine import (
    ArgumentoEstado,
    EstadoDerivado,
    EstadoForzado,
    asignar_nombres,
    construir_nombre_base,
    derivar_estado,
    motivo_cambio_estado_rechazado,
    normalizar_estado,
    resolver_estado,
    sede_requiere_sala,
)
from sesiones_engine.errors import (
    ErrorNoEncontrado,
    ErrorRecursoNoDisponible,
    ErrorSesion,
    ErrorValidacion,
)


CAMPOS_ACTUALIZABLES = frozenset({"inicio", "fin", "sala_id", "formador_ids", "unidad_ids"})


def _configuracion_por_defecto() -> ConfiguracionImportacion:
    return ConfiguracionImportacion.desde_settings(get_settings())


def _texto(valor: Any) -> Optional[str]:
    if valor is None:
        return None
    texto = str(valor).strip()
    return texto or None


def _a_utc(valor: Any, campo: str) -> Optional[datetime]:
    """
    Normaliza una fecha (datetime o ISO string) a UTC con pendulum.

    Vacío -> None. Cualquier otro valor no interpretable es un error de
    validación.
    """
    if valor is None:
        return None
    if isinstance(valor, datetime):
        parsed = valor
    elif isinstance(valor, str):
        texto = valor.strip()
        if not texto:
            return None
        try:
            parsed = pendulum.parse(texto)
        except (ValueError, OverflowError):
            raise ErrorValidacion(f"Fecha inválida en {campo}") from None
    else:
        raise ErrorValidacion(f"Fecha inválida en {campo}")
    if not isinstance(parsed, datetime):
        raise ErrorValidacion(f"Fecha inválida en {campo}")
    # Fechas en los extremos del calendario pueden desbordar al pasar a UTC.
    try:
        return pendulum.instance(parsed).in_timezone("UTC")
    except (ValueError, OverflowError):
        raise ErrorValidacion(f"Fecha fuera de rango en {campo}") from None


def _validar_rango(inicio: Optional[datetime], fin: Optional[datetime]) -> None:
    if inicio is not None and fin is not None and fin < inicio:
        raise ErrorValidacion("La fecha de fin no puede ser anterior al inicio")


def _candidatos_producto(deal_id: str, deal_product_id: str) -> List[str]:
    """Ids/códigos a probar para un producto.

    Acepta la forma compuesta "<deal_id>_<producto>" y prueba ambas variantes.
    """
    candidatos = [deal_product_id]
    partes = deal_product_id.split("_")
    if len(partes) == 2 and partes[0] == deal_id and partes[1]:
        candidatos.append(partes[1])
    return candidatos


def _sin_duplicados(ids: Optional[Sequence[Any]]) -> List[str]:
    limpios = (_texto(i) for i in (ids or []))
    return list(dict.fromkeys(i for i in limpios if i))


def _verificar_catalogo(
    repo: Any,
    *,
    formador_ids: Sequence[str],
    unidad_ids: Sequence[str],
    sala_id: Optional[str],
) -> None:
    """Comprueba contra el registro de recursos que los ids existen."""
    formadores = set(repo.list_trainer_ids())
    for fid in formador_ids:
        if fid not in formadores:
            raise ErrorNoEncontrado(f"Formador {fid} no encontrado")
    unidades = set(repo.list_unit_ids())
    for uid in unidad_ids:
        if uid not in unidades:
            raise ErrorNoEncontrado(f"Unidad móvil {uid} no encontrada")
    if sala_id and sala_id not in set(repo.list_room_ids()):
        raise ErrorNoEncontrado(f"Sala {sala_id} no encontrada")


def _serializar_sesion(repo: Any, sesion: Any) -> Dict[str, Any]:
    return {
        "sesion_id": sesion.sesion_id,
        "deal_id": sesion.deal_id,
        "deal_product_id": sesion.deal_product_id,
        "nombre_cache": sesion.nombre_cache,
        "direccion": sesion.direccion,
        "estado": sesion.estado,
        "inicio": sesion.inicio,
        "fin": sesion.fin,
        "sala_id": sesion.sala_id,
        "formador_ids": repo.trainer_ids_for(sesion.sesion_id),
        "unidad_ids": repo.unit_ids_for(sesion.sesion_id),
    }


def hay_conflicto(
    inicio: Optional[datetime],
    fin: Optional[datetime],
    *,
    formador_ids: Sequence[str] = (),
    sala_id: Optional[str] = None,
    unidad_ids: Sequence[str] = (),
    excluir_sesion_id: Optional[str] = None,
    repositorio: Any = None,
) -> bool:
    """
    Indica si algún recurso pedido ya está reservado en un rango solapado.

    Las tres bolsas (formadores, sala, unidades móviles) se comprueban a la
    vez y basta con que una choque. Sin inicio o fin no hay conflicto.
    `excluir_sesion_id` descarta la propia sesión en actualizaciones.
    """
    if inicio is None or fin is None:
        return False
    repo = repositorio or mock_state
    solapadas = repo.find_overlapping(
        formador_ids=list(formador_ids),
        sala_ids=[sala_id] if sala_id else [],
        unidad_ids=list(unidad_ids),
        inicio=inicio,
        fin=fin,
        excluir_sesion_id=excluir_sesion_id,
    )
    if solapadas:
        logging.info(
            "Solapamiento: %d sesiones en conflicto para [%s, %s] (excluida=%s)",
            len(solapadas),
            inicio,
            fin,
            excluir_sesion_id,
        )
    return bool(solapadas)


def gestionar_busqueda_conflictos(
    *,
    inicio: Any,
    fin: Any,
    formador_ids: Sequence[str] = (),
    sala_ids: Sequence[str] = (),
    unidad_ids: Sequence[str] = (),
    excluir_sesion_id: Optional[str] = None,
    repositorio: Any = None,
) -> List[Dict[str, Any]]:
    """
    Detalle de conflictos por recurso, separado por bolsa.

    Retorna una lista de dicts {resource_type, resource_id, conflicts}, donde
    resource_type es "sala", "formador" o "unidad_movil" y conflicts lista las
    sesiones que ocupan ese recurso en el rango. Cada conflicto incluye el
    estado de la sesión: las canceladas o finalizadas también ocupan recurso.
    """
    inicio_dt = _a_utc(inicio, "inicio")
    fin_dt = _a_utc(fin, "fin")
    _validar_rango(inicio_dt, fin_dt)
    if inicio_dt is None or fin_dt is None:
        return []

    repo = repositorio or mock_state
    bolsas = (
        ("sala", "sala_ids", _sin_duplicados(sala_ids)),
        ("formador", "formador_ids", _sin_duplicados(formador_ids)),
        ("unidad_movil", "unidad_ids", _sin_duplicados(unidad_ids)),
    )
    resumen: List[Dict[str, Any]] = []
    with repo.transaccion():
        for tipo, clave, ids in bolsas:
            for recurso_id in ids:
                filtros: Dict[str, List[str]] = {"formador_ids": [], "sala_ids": [], "unidad_ids": []}
                filtros[clave] = [recurso_id]
                solapadas = repo.find_overlapping(
                    inicio=inicio_dt,
                    fin=fin_dt,
                    excluir_sesion_id=excluir_sesion_id,
                    **filtros,
                )
                if not solapadas:
                    continue
                conflictos = []
                for s in solapadas:
                    producto = repo.get_product(s.deal_product_id)
                    conflictos.append(
                        {
                            "session_id": s.sesion_id,
                            "deal_id": s.deal_id,
                            "estado": s.estado,
                            "product_code": producto.code if producto else None,
                            "product_name": producto.name if producto else None,
                            "inicio": s.inicio,
                            "fin": s.fin,
                        }
                    )
                resumen.append({"resource_type": tipo, "resource_id": recurso_id, "conflicts": conflictos})
    return resumen


def reindexar_nombres(
    deal_product_id: str, nombre_base: str, *, repositorio: Any = None
) -> List[Dict[str, str]]:
    """
    Renumera "<base> - Sesión N" todas las sesiones hermanas de un producto.

    El orden es el de creación (desempate por id), así que repetir la llamada
    sin cambios produce los mismos nombres. Debe invocarse dentro de la misma
    transacción que la escritura que la dispara.
    """
    repo = repositorio or mock_state
    base = nombre_base.strip() if nombre_base and nombre_base.strip() else "Sesión"
    hermanas = repo.find_sessions_for_product(deal_product_id)
    actuales = {s.sesion_id: s.nombre_cache for s in hermanas}
    nombres = asignar_nombres(base, [s.sesion_id for s in hermanas])
    for sesion_id, esperado in nombres:
        if actuales[sesion_id] != esperado:
            repo.rename_session(sesion_id, esperado)
    return [{"sesion_id": sid, "nombre": nombre} for sid, nombre in nombres]


def gestionar_creacion_sesion(
    *,
    deal_id: str,
    deal_product_id: str,
    formador_ids: Sequence[str] = (),
    unidad_ids: Sequence[str] = (),
    sala_id: Optional[str] = None,
    inicio: Any = None,
    fin: Any = None,
    estado: ArgumentoEstado = EstadoDerivado(),
    configuracion: Optional[ConfiguracionImportacion] = None,
    repositorio: Any = None,
) -> Dict[str, Any]:
    """
    Gerente de creación de sesiones (asignador).

    - Valida fechas antes de tocar el repositorio.
    - En una única transacción: resuelve deal y producto, verifica recursos,
      chequea solapamientos, calcula el estado, persiste sesión y
      asignaciones y renumera las sesiones hermanas.
    - Cualquier error revierte la transacción completa.
    """
    inicio_dt = _a_utc(inicio, "inicio")
    fin_dt = _a_utc(fin, "fin")
    _validar_rango(inicio_dt, fin_dt)

    deal_id_txt = _texto(deal_id)
    producto_txt = _texto(deal_product_id)
    if not deal_id_txt or not producto_txt:
        raise ErrorValidacion("deal_id y deal_product_id son obligatorios")

    formadores = _sin_duplicados(formador_ids)
    unidades = _sin_duplicados(unidad_ids)
    sala = _texto(sala_id)
    config = configuracion or _configuracion_por_defecto()
    repo = repositorio or mock_state

    logging.info(
        "Gerente(creación): deal=%s, producto=%s, formadores=%s, unidades=%s, sala=%s, inicio=%s, fin=%s",
        deal_id_txt,
        producto_txt,
        formadores,
        unidades,
        sala,
        inicio_dt,
        fin_dt,
    )

    with repo.transaccion():
        deal = repo.get_deal(deal_id_txt)
        if deal is None:
            raise ErrorNoEncontrado(f"Presupuesto {deal_id_txt} no encontrado")
        producto = repo.find_product(deal.deal_id, _candidatos_producto(deal.deal_id, producto_txt))
        if producto is None:
            raise ErrorNoEncontrado(f"Producto {producto_txt} no encontrado en el presupuesto")

        _verificar_catalogo(repo, formador_ids=formadores, unidad_ids=unidades, sala_id=sala)

        if hay_conflicto(
            inicio_dt,
            fin_dt,
            formador_ids=formadores,
            sala_id=sala,
            unidad_ids=unidades,
            repositorio=repo,
        ):
            raise ErrorRecursoNoDisponible()

        estado_final = resolver_estado(
            estado,
            sede_requiere_sala=sede_requiere_sala(deal.sede_label, config.etiquetas_in_company),
            sala_id=sala,
            formador_ids=formadores,
            unidad_ids=unidades,
            inicio=inicio_dt,
            fin=fin_dt,
        )
        nombre_base = repo.get_product_base_name(producto.id) or construir_nombre_base(
            producto.name, producto.code, config.nombre_base_fallback
        )

        creada = repo.create_session(
            deal_id=deal.deal_id,
            deal_product_id=producto.id,
            nombre_cache=nombre_base,
            direccion=deal.training_address or "",
            estado=estado_final,
            inicio=inicio_dt,
            fin=fin_dt,
            sala_id=sala,
        )
        if formadores:
            repo.create_trainer_assignments(creada.sesion_id, formadores)
        if unidades:
            repo.create_mobile_unit_assignments(creada.sesion_id, unidades)

        reindexar_nombres(producto.id, nombre_base, repositorio=repo)
        resultado = _serializar_sesion(repo, repo.get_session(creada.sesion_id))

    logging.info(
        "Gerente(creación): sesión %s creada como %s (%s)",
        resultado["sesion_id"],
        resultado["nombre_cache"],
        resultado["estado"],
    )
    return resultado


def gestionar_actualizacion_sesion(
    sesion_id: str,
    cambios: Mapping[str, Any],
    *,
    estado: ArgumentoEstado = EstadoDerivado(),
    configuracion: Optional[ConfiguracionImportacion] = None,
    repositorio: Any = None,
) -> Dict[str, Any]:
    """
    Modifica fechas, sala, formadores o unidades de una sesión existente.

    El chequeo de solapamiento excluye a la propia sesión. El estado se
    re-deriva salvo que la sesión esté en un estado manual o el llamador
    fuerce uno; un estado forzado solo se acepta si la transición es válida
    (ver `motivo_cambio_estado_rechazado`).
    """
    desconocidos = set(cambios) - CAMPOS_ACTUALIZABLES
    if desconocidos:
        raise ErrorValidacion(f"Campos no actualizables: {', '.join(sorted(desconocidos))}")

    nuevos: Dict[str, Any] = {}
    if "inicio" in cambios:
        nuevos["inicio"] = _a_utc(cambios["inicio"], "inicio")
    if "fin" in cambios:
        nuevos["fin"] = _a_utc(cambios["fin"], "fin")
    if "sala_id" in cambios:
        nuevos["sala_id"] = _texto(cambios["sala_id"])
    _validar_rango(nuevos.get("inicio"), nuevos.get("fin"))

    config = configuracion or _configuracion_por_defecto()
    repo = repositorio or mock_state

    with repo.transaccion():
        sesion = repo.get_session(sesion_id)
        if sesion is None:
            raise ErrorNoEncontrado(f"Sesión {sesion_id} no encontrada")

        inicio_dt = nuevos.get("inicio", sesion.inicio)
        fin_dt = nuevos.get("fin", sesion.fin)
        sala = nuevos.get("sala_id", sesion.sala_id)
        _validar_rango(inicio_dt, fin_dt)

        formadores = (
            _sin_duplicados(cambios["formador_ids"])
            if "formador_ids" in cambios
            else repo.trainer_ids_for(sesion_id)
        )
        unidades = (
            _sin_duplicados(cambios["unidad_ids"])
            if "unidad_ids" in cambios
            else repo.unit_ids_for(sesion_id)
        )
        _verificar_catalogo(repo, formador_ids=formadores, unidad_ids=unidades, sala_id=sala)

        if hay_conflicto(
            inicio_dt,
            fin_dt,
            formador_ids=formadores,
            sala_id=sala,
            unidad_ids=unidades,
            excluir_sesion_id=sesion_id,
            repositorio=repo,
        ):
            raise ErrorRecursoNoDisponible()

        deal = repo.get_deal(sesion.deal_id)
        requiere_sala = sede_requiere_sala(deal.sede_label if deal else None, config.etiquetas_in_company)
        if isinstance(estado, EstadoForzado):
            automatico = derivar_estado(requiere_sala, sala, formadores, unidades, inicio_dt, fin_dt)
            motivo = motivo_cambio_estado_rechazado(sesion.estado, estado.estado, automatico)
            if motivo:
                raise ErrorValidacion(motivo)
        estado_final = resolver_estado(
            estado,
            estado_actual=sesion.estado,
            sede_requiere_sala=requiere_sala,
            sala_id=sala,
            formador_ids=formadores,
            unidad_ids=unidades,
            inicio=inicio_dt,
            fin=fin_dt,
        )

        repo.update_session(sesion_id, inicio=inicio_dt, fin=fin_dt, sala_id=sala, estado=estado_final)
        if "formador_ids" in cambios:
            repo.delete_trainer_assignments(sesion_id)
            repo.create_trainer_assignments(sesion_id, formadores)
        if "unidad_ids" in cambios:
            repo.delete_mobile_unit_assignments(sesion_id)
            repo.create_mobile_unit_assignments(sesion_id, unidades)
        resultado = _serializar_sesion(repo, repo.get_session(sesion_id))

    logging.info("Gerente(actualización): sesión %s -> %s", sesion_id, resultado["estado"])
    return resultado


def gestionar_renombrado_sesion(
    sesion_id: str, nombre_base: str, *, repositorio: Any = None
) -> List[Dict[str, str]]:
    """
    Cambia el nombre base de una sesión y renumera todas sus hermanas.

    La base queda guardada para el producto: las sesiones que se creen después
    se numeran con ella y no con el nombre del producto.
    """
    base = _texto(nombre_base)
    if not base:
        raise ErrorValidacion("El nombre no puede estar vacío")
    repo = repositorio or mock_state
    with repo.transaccion():
        sesion = repo.get_session(sesion_id)
        if sesion is None:
            raise ErrorNoEncontrado(f"Sesión {sesion_id} no encontrada")
        repo.set_product_base_name(sesion.deal_product_id, base)
        nombres = reindexar_nombres(sesion.deal_product_id, base, repositorio=repo)
    logging.info("Gerente(renombrado): producto=%s, base=%s, sesiones=%d", sesion.deal_product_id, base, len(nombres))
    return nombres


@dataclass(frozen=True)
class FilaNormalizada:
    deal_id: str
    deal_product_id: str
    formador_id: Optional[str]
    estado: ArgumentoEstado
    inicio: Optional[datetime]
    fin: Optional[datetime]


def _valor_fila(fila: Mapping[str, Any], *claves: str) -> Any:
    for clave in claves:
        if clave in fila:
            return fila[clave]
    return None


def normalizar_fila(fila: Any, index: int) -> FilaNormalizada:
    """
    Valida y normaliza una fila de importación sin tocar el repositorio.

    Acepta claves camelCase (dealId, dealProductId, start, end, trainerId,
    state) y sus equivalentes snake_case/castellano.
    """
    if not isinstance(fila, Mapping):
        raise ErrorValidacion(f"Fila {index + 1}: formato inválido")

    deal_id = _texto(_valor_fila(fila, "dealId", "deal_id"))
    producto = _texto(_valor_fila(fila, "dealProductId", "deal_product_id"))
    if not deal_id or not producto:
        raise ErrorValidacion(f"Fila {index + 1}: deal_id y deal_product_id son obligatorios")

    inicio = _a_utc(_valor_fila(fila, "start", "fecha_inicio_utc"), "inicio")
    fin = _a_utc(_valor_fila(fila, "end", "fecha_fin_utc"), "fin")
    _validar_rango(inicio, fin)

    estado_raw = _valor_fila(fila, "state", "estado")
    estado: ArgumentoEstado = EstadoDerivado()
    if _texto(estado_raw):
        forzado = normalizar_estado(estado_raw)
        if forzado is None:
            logging.warning("Fila %d: estado desconocido %r, se calculará automáticamente", index + 1, estado_raw)
        else:
            estado = EstadoForzado(forzado)

    return FilaNormalizada(
        deal_id=deal_id,
        deal_product_id=producto,
        formador_id=_texto(_valor_fila(fila, "trainerId", "trainer_id")),
        estado=estado,
        inicio=inicio,
        fin=fin,
    )


def _resultado_fila(
    index: int,
    deal_id: Optional[str],
    product_id: Optional[str],
    *,
    session_id: Optional[str] = None,
    error: Optional[ErrorSesion] = None,
    mensaje: str = "",
) -> Dict[str, Any]:
    return {
        "index": index,
        "deal_id": deal_id,
        "product_id": product_id,
        "session_id": session_id,
        "status": "error" if error else "success",
        "code": error.codigo.value if error else None,
        "message": error.mensaje if error else mensaje,
    }


def gestionar_importacion(
    filas: Sequence[Any],
    *,
    configuracion: Optional[ConfiguracionImportacion] = None,
    repositorio: Any = None,
) -> Dict[str, Any]:
    """
    Orquestador de importación masiva de sesiones.

    - Procesa las filas en orden; cada una se normaliza fuera de cualquier
      transacción y se crea en su propia transacción.
    - Un fallo en una fila (validación, no encontrado, conflicto o error
      inesperado) se registra en su resultado y no afecta al resto.
    - Las filas ya confirmadas son visibles para el chequeo de conflictos de
      las siguientes.

    Retorna {"results": [...], "summary": {"total", "successes", "errors"}}.
    """
    config = configuracion or _configuracion_por_defecto()
    repo = repositorio or mock_state
    salas = [s for s in (_texto(x) for x in repo.list_room_ids()) if s]

    resultados: List[Dict[str, Any]] = []
    for index, fila in enumerate(filas):
        crudo = fila if isinstance(fila, Mapping) else {}
        deal_crudo = _texto(_valor_fila(crudo, "dealId", "deal_id"))
        producto_crudo = _texto(_valor_fila(crudo, "dealProductId", "deal_product_id"))
        try:
            normalizada = normalizar_fila(fila, index)
        except ErrorValidacion as e:
            logging.warning("Gerente(importación): fila %d inválida: %s", index, e.mensaje)
            resultados.append(_resultado_fila(index, deal_crudo, producto_crudo, error=e))
            continue
        except Exception:
            logging.exception(
                "Gerente(importación): error inesperado normalizando fila %d (deal=%s, producto=%s)",
                index,
                deal_crudo,
                producto_crudo,
            )
            inesperado = ErrorSesion(f"Fila {index + 1}: no se pudo interpretar")
            resultados.append(_resultado_fila(index, deal_crudo, producto_crudo, error=inesperado))
            continue

        try:
            sala_id = config.selector_sala(salas)
            if not sala_id:
                raise ErrorNoEncontrado("No hay salas disponibles para asignar")
            creada = gestionar_creacion_sesion(
                deal_id=normalizada.deal_id,
                deal_product_id=normalizada.deal_product_id,
                formador_ids=[normalizada.formador_id] if normalizada.formador_id else [],
                unidad_ids=list(config.unidad_ids),
                sala_id=sala_id,
                inicio=normalizada.inicio,
                fin=normalizada.fin,
                estado=normalizada.estado,
                configuracion=config,
                repositorio=repo,
            )
        except ErrorSesion as e:
            logging.warning(
                "Gerente(importación): fila %d rechazada (deal=%s, producto=%s): %s %s",
                index,
                normalizada.deal_id,
                normalizada.deal_product_id,
                e.codigo.value,
                e.mensaje,
            )
            resultados.append(_resultado_fila(index, normalizada.deal_id, normalizada.deal_product_id, error=e))
            continue
        except Exception:
            # Fallo de infraestructura: se aísla en la fila y se continúa.
            logging.exception(
                "Gerente(importación): error inesperado en fila %d (deal=%s, producto=%s)",
                index,
                normalizada.deal_id,
                normalizada.deal_product_id,
            )
            inesperado = ErrorSesion("No se pudo crear la sesión")
            resultados.append(
                _resultado_fila(index, normalizada.deal_id, normalizada.deal_product_id, error=inesperado)
            )
            continue

        resultados.append(
            _resultado_fila(
                index,
                normalizada.deal_id,
                normalizada.deal_product_id,
                session_id=creada["sesion_id"],
                mensaje=f'Sesión "{creada["nombre_cache"]}" creada correctamente',
            )
        )

    exitos = sum(1 for r in resultados if r["status"] == "success")
    resumen = {"total": len(resultados), "successes": exitos, "errors": len(resultados) - exitos}
    logging.info("Gerente(importación): %s", resumen)
    return {"results": resultados, "summary": resumen}


def listar_recursos(*, repositorio: Any = None) -> Dict[str, List[str]]:
    repo = repositorio or mock_state
    return {
        "salas": repo.list_room_ids(),
        "formadores": repo.list_trainer_ids(),
        "unidades_moviles": repo.list_unit_ids(),
    }


__all__ = [
    "FilaNormalizada",
    "gestionar_actualizacion_sesion",
    "gestionar_busqueda_conflictos",
    "gestionar_creacion_sesion",
    "gestionar_importacion",
    "gestionar_renombrado_sesion",
    "hay_conflicto",
    "listar_recursos",
    "normalizar_fila",
    "reindexar_nombres",
]
