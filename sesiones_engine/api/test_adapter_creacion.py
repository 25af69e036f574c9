from unittest.mock import MagicMock

import pytest

from sesiones_engine import mock_state
from sesiones_engine.api.adapter import (
    gestionar_creacion_sesion,
    hay_conflicto,
    reindexar_nombres,
)
from sesiones_engine.config import DEFAULT_UNIT_ID
from sesiones_engine.engine.engine import EstadoForzado, EstadoSesion
from sesiones_engine.errors import (
    CodigoError,
    ErrorNoEncontrado,
    ErrorRecursoNoDisponible,
    ErrorValidacion,
)


def _crear(**kwargs):
    datos = {
        "deal_id": "D-100",
        "deal_product_id": "P-1",
        "formador_ids": ["F1"],
        "unidad_ids": [DEFAULT_UNIT_ID],
        "sala_id": "SALA-1",
        "inicio": "2025-11-06T08:00:00Z",
        "fin": "2025-11-06T10:00:00Z",
    }
    datos.update(kwargs)
    return gestionar_creacion_sesion(**datos)


def test_creacion_completa_queda_planificada():
    mock_state.reset_state()
    creada = _crear()
    assert creada["estado"] == EstadoSesion.PLANIFICADA
    assert creada["nombre_cache"] == "Prevención de Riesgos - Sesión 1"
    assert creada["direccion"].startswith("C/ Primavera")
    assert creada["formador_ids"] == ["F1"]
    assert creada["unidad_ids"] == [DEFAULT_UNIT_ID]
    assert creada["inicio"].isoformat() == "2025-11-06T08:00:00+00:00"


def test_creacion_sin_sala_en_sede_con_sala_es_borrador():
    mock_state.reset_state()
    creada = _crear(sala_id=None)
    assert creada["estado"] == EstadoSesion.BORRADOR


def test_creacion_in_company_sin_sala_es_planificada():
    mock_state.reset_state()
    creada = _crear(deal_id="D-200", deal_product_id="P-2", sala_id=None)
    assert creada["estado"] == EstadoSesion.PLANIFICADA
    assert creada["nombre_cache"] == "Carretillas Elevadoras - Sesión 1"


def test_creacion_sin_fechas_es_borrador_y_no_choca():
    mock_state.reset_state()
    _crear()
    creada = _crear(inicio=None, fin=None)
    assert creada["estado"] == EstadoSesion.BORRADOR
    assert creada["inicio"] is None


def test_estado_forzado_se_respeta_verbatim():
    mock_state.reset_state()
    creada = _crear(formador_ids=[], estado=EstadoForzado(EstadoSesion.CANCELADA))
    assert creada["estado"] == EstadoSesion.CANCELADA


def test_producto_sin_nombre_usa_codigo():
    mock_state.reset_state()
    creada = _crear(deal_id="D-300", deal_product_id="P-3")
    assert creada["nombre_cache"] == "EXT-03 - Sesión 1"


def test_producto_por_codigo_o_id_compuesto():
    mock_state.reset_state()
    por_codigo = _crear(deal_product_id="PRL-01", inicio=None, fin=None)
    compuesto = _crear(deal_product_id="D-100_P-1", inicio=None, fin=None)
    assert por_codigo["deal_product_id"] == "P-1"
    assert compuesto["deal_product_id"] == "P-1"


def test_deal_inexistente_not_found():
    mock_state.reset_state()
    with pytest.raises(ErrorNoEncontrado) as exc:
        _crear(deal_id="D-999")
    assert exc.value.codigo == CodigoError.NOT_FOUND
    assert mock_state.list_sesiones() == []


def test_producto_de_otro_deal_not_found():
    mock_state.reset_state()
    with pytest.raises(ErrorNoEncontrado):
        _crear(deal_product_id="P-2")


def test_formador_desconocido_not_found():
    mock_state.reset_state()
    with pytest.raises(ErrorNoEncontrado):
        _crear(formador_ids=["F9"])
    assert mock_state.list_sesiones() == []


def test_conflicto_de_formador_sin_escrituras_parciales():
    mock_state.reset_state()
    _crear()
    with pytest.raises(ErrorRecursoNoDisponible) as exc:
        _crear(sala_id="SALA-2", unidad_ids=["UM-2"], inicio="2025-11-06T09:00:00Z", fin="2025-11-06T11:00:00Z")
    assert exc.value.codigo == CodigoError.RESOURCE_UNAVAILABLE
    assert len(mock_state.list_sesiones()) == 1
    assert len(mock_state.MOCK_ASIG_FORMADORES) == 1
    assert len(mock_state.MOCK_ASIG_UNIDADES) == 1


def test_conflicto_por_sala_o_por_unidad():
    mock_state.reset_state()
    _crear()
    with pytest.raises(ErrorRecursoNoDisponible):
        _crear(formador_ids=["F2"], unidad_ids=["UM-2"])
    with pytest.raises(ErrorRecursoNoDisponible):
        _crear(formador_ids=["F2"], sala_id="SALA-2")
    # Sin recursos compartidos no hay conflicto
    libre = _crear(formador_ids=["F2"], sala_id="SALA-2", unidad_ids=["UM-2"])
    assert libre["estado"] == EstadoSesion.PLANIFICADA


def test_extremos_que_se_tocan_son_conflicto():
    mock_state.reset_state()
    _crear()
    with pytest.raises(ErrorRecursoNoDisponible):
        _crear(inicio="2025-11-06T10:00:00Z", fin="2025-11-06T12:00:00Z")


def test_hay_conflicto_sin_fechas_es_noop():
    mock_state.reset_state()
    repo = MagicMock()
    assert hay_conflicto(None, None, formador_ids=["F1"], repositorio=repo) is False
    assert repo.mock_calls == []


def test_fin_anterior_a_inicio_valida_sin_llamar_al_repositorio():
    repo = MagicMock()
    with pytest.raises(ErrorValidacion) as exc:
        gestionar_creacion_sesion(
            deal_id="D-100",
            deal_product_id="P-1",
            formador_ids=["F1"],
            inicio="2025-11-06T12:00:00Z",
            fin="2025-11-06T10:00:00Z",
            repositorio=repo,
        )
    assert exc.value.codigo == CodigoError.VALIDATION_ERROR
    assert repo.mock_calls == []


def test_fecha_mal_formada_es_error_de_validacion():
    repo = MagicMock()
    with pytest.raises(ErrorValidacion):
        gestionar_creacion_sesion(
            deal_id="D-100", deal_product_id="P-1", inicio="no-es-fecha", repositorio=repo
        )
    assert repo.mock_calls == []


def test_hermanas_se_renumeran_en_orden_de_creacion():
    mock_state.reset_state()
    a = _crear(inicio="2025-11-10T08:00:00Z", fin="2025-11-10T10:00:00Z")
    b = _crear(inicio="2025-11-03T08:00:00Z", fin="2025-11-03T10:00:00Z")
    nombres = {s.sesion_id: s.nombre_cache for s in mock_state.find_sessions_for_product("P-1")}
    assert nombres[a["sesion_id"]] == "Prevención de Riesgos - Sesión 1"
    assert nombres[b["sesion_id"]] == "Prevención de Riesgos - Sesión 2"


def test_reindexado_idempotente():
    mock_state.reset_state()
    _crear(inicio=None, fin=None)
    _crear(inicio=None, fin=None)
    with mock_state.transaccion():
        primera = reindexar_nombres("P-1", "Curso X")
    with mock_state.transaccion():
        segunda = reindexar_nombres("P-1", "Curso X")
    assert primera == segunda
    assert [n["nombre"] for n in segunda] == ["Curso X - Sesión 1", "Curso X - Sesión 2"]


def test_reindexado_no_renombra_lo_que_ya_esta_bien():
    mock_state.reset_state()
    _crear(inicio=None, fin=None)
    repo = MagicMock(wraps=mock_state)
    reindexar_nombres("P-1", "Prevención de Riesgos", repositorio=repo)
    repo.rename_session.assert_not_called()
