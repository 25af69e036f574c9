from datetime import datetime, timedelta, timezone
from itertools import product

from sesiones_engine.engine.engine import (
    ESTADOS_MANUALES,
    EstadoDerivado,
    EstadoForzado,
    EstadoSesion,
    asignar_nombres,
    construir_nombre_base,
    derivar_estado,
    motivo_cambio_estado_rechazado,
    normalizar_estado,
    normalizar_sede,
    rangos_solapan,
    resolver_estado,
    sede_requiere_sala,
)


S = datetime(2025, 11, 6, 8, 0, tzinfo=timezone.utc)
E = datetime(2025, 11, 6, 10, 0, tzinfo=timezone.utc)


def test_solapamiento_inclusivo_basico():
    # existente 08:00-10:00
    assert rangos_solapan(S, E, S + timedelta(hours=1), E + timedelta(hours=1))
    assert rangos_solapan(S, E, S - timedelta(hours=1), S + timedelta(minutes=1))
    # contenido dentro del existente
    assert rangos_solapan(S, E, S + timedelta(minutes=30), S + timedelta(minutes=45))


def test_extremos_que_se_tocan_cuentan_como_conflicto():
    assert rangos_solapan(S, E, E, E + timedelta(hours=1))
    assert rangos_solapan(S, E, S - timedelta(hours=1), S)


def test_rangos_disjuntos_no_solapan():
    assert not rangos_solapan(S, E, E + timedelta(minutes=1), E + timedelta(hours=2))
    assert not rangos_solapan(S, E, S - timedelta(hours=2), S - timedelta(minutes=1))


def test_sin_extremos_no_hay_conflicto():
    assert not rangos_solapan(S, E, None, E)
    assert not rangos_solapan(S, E, S, None)
    assert not rangos_solapan(None, E, S, E)


def test_regla_de_solapamiento_sobre_rejilla():
    """Coincide con `existente.inicio <= fin and existente.fin >= inicio`."""
    puntos = [S + timedelta(hours=h) for h in range(0, 5)]
    for a, b, c, d in product(puntos, repeat=4):
        if b < a or d < c:
            continue
        assert rangos_solapan(a, b, c, d) == (a <= d and b >= c)


def test_derivar_estado_sin_sala_con_sede_que_la_exige_es_borrador():
    assert derivar_estado(True, None, ["t1"], ["u1"], S, E) == EstadoSesion.BORRADOR


def test_derivar_estado_in_company_sin_sala_es_planificada():
    assert derivar_estado(False, None, ["t1"], ["u1"], S, E) == EstadoSesion.PLANIFICADA


def test_derivar_estado_sin_formador_o_sin_unidad_es_borrador():
    assert derivar_estado(False, "SALA-1", [], ["u1"], S, E) == EstadoSesion.BORRADOR
    assert derivar_estado(False, "SALA-1", ["t1"], [], S, E) == EstadoSesion.BORRADOR


def test_derivar_estado_sin_fechas_completas_es_borrador():
    assert derivar_estado(True, "SALA-1", ["t1"], ["u1"], S, None) == EstadoSesion.BORRADOR
    assert derivar_estado(True, "SALA-1", ["t1"], ["u1"], None, None) == EstadoSesion.BORRADOR


def test_derivar_estado_sala_en_blanco_no_cuenta():
    assert derivar_estado(True, "   ", ["t1"], ["u1"], S, E) == EstadoSesion.BORRADOR


def test_derivar_estado_solo_devuelve_borrador_o_planificada():
    salas = [None, "SALA-1"]
    listas = [[], ["x"]]
    fechas = [None, S]
    vistos = set()
    for requiere, sala, fs, us, ini, fin in product([True, False], salas, listas, listas, fechas, [None, E]):
        vistos.add(derivar_estado(requiere, sala, fs, us, ini, fin))
    assert vistos == {EstadoSesion.BORRADOR, EstadoSesion.PLANIFICADA}
    assert not vistos & ESTADOS_MANUALES


def test_resolver_estado_forzado_se_respeta():
    estado = resolver_estado(
        EstadoForzado(EstadoSesion.FINALIZADA),
        sede_requiere_sala=True,
        sala_id=None,
        formador_ids=[],
        unidad_ids=[],
        inicio=None,
        fin=None,
    )
    assert estado == EstadoSesion.FINALIZADA


def test_resolver_estado_no_degrada_estado_manual():
    for manual in ESTADOS_MANUALES:
        estado = resolver_estado(
            EstadoDerivado(),
            estado_actual=manual,
            sede_requiere_sala=False,
            sala_id=None,
            formador_ids=["t1"],
            unidad_ids=["u1"],
            inicio=S,
            fin=E,
        )
        assert estado == manual


def test_resolver_estado_rederiva_desde_planificada():
    estado = resolver_estado(
        EstadoDerivado(),
        estado_actual=EstadoSesion.PLANIFICADA,
        sede_requiere_sala=False,
        sala_id=None,
        formador_ids=[],
        unidad_ids=["u1"],
        inicio=S,
        fin=E,
    )
    assert estado == EstadoSesion.BORRADOR


def test_cambio_de_estado_manual_valido():
    B, P = EstadoSesion.BORRADOR, EstadoSesion.PLANIFICADA
    assert motivo_cambio_estado_rechazado(P, EstadoSesion.FINALIZADA, P) is None
    assert motivo_cambio_estado_rechazado(B, EstadoSesion.SUSPENDIDA, B) is None
    assert motivo_cambio_estado_rechazado(EstadoSesion.CANCELADA, B, B) is None
    assert motivo_cambio_estado_rechazado(EstadoSesion.SUSPENDIDA, P, P) is None
    assert motivo_cambio_estado_rechazado(B, B, B) is None


def test_cambio_de_estado_no_editable():
    B, P = EstadoSesion.BORRADOR, EstadoSesion.PLANIFICADA
    assert motivo_cambio_estado_rechazado(B, P, B) == "Estado no editable"
    assert motivo_cambio_estado_rechazado(P, B, P) == "Estado no editable"
    assert motivo_cambio_estado_rechazado(EstadoSesion.FINALIZADA, B, P) == "Estado no editable"


def test_cambio_a_manual_exige_planificada():
    B = EstadoSesion.BORRADOR
    assert (
        motivo_cambio_estado_rechazado(B, EstadoSesion.FINALIZADA, B)
        == "La sesión debe estar planificada para cambiar el estado"
    )
    assert (
        motivo_cambio_estado_rechazado(EstadoSesion.PLANIFICADA, EstadoSesion.CANCELADA, B)
        == "La sesión debe estar planificada para cambiar el estado"
    )


def test_normalizar_estado_acepta_castellano_e_ingles():
    assert normalizar_estado(" planificada ") == EstadoSesion.PLANIFICADA
    assert normalizar_estado("Cancelled") == EstadoSesion.CANCELADA
    assert normalizar_estado("draft") == EstadoSesion.BORRADOR
    assert normalizar_estado("") is None
    assert normalizar_estado("PENDIENTE") is None


def test_sede_in_company_no_requiere_sala():
    etiquetas = ["In Company", "In Company - Unidad Móvil"]
    assert normalizar_sede("  In   Company ") == "in company"
    assert not sede_requiere_sala("in company", etiquetas)
    assert not sede_requiere_sala("IN COMPANY - UNIDAD MOVIL", etiquetas)
    assert sede_requiere_sala("GEP Arganda", etiquetas)
    assert sede_requiere_sala(None, etiquetas)


def test_nombre_base_y_numeracion():
    assert construir_nombre_base("Curso X", "CX") == "Curso X"
    assert construir_nombre_base("  ", "CX") == "CX"
    assert construir_nombre_base(None, None) == "Sesión"
    assert asignar_nombres("Curso X", ["a", "b"]) == [
        ("a", "Curso X - Sesión 1"),
        ("b", "Curso X - Sesión 2"),
    ]
