from typing import Any, Dict, List

from .config import DEFAULT_UNIT_ID


def get_deals() -> List[Dict[str, Any]]:
    """Simula presupuestos (deals) con su sede y dirección de formación."""
    return [
        {
            "deal_id": "D-100",
            "training_address": "C/ Primavera, 1, 28500, Arganda del Rey, Madrid",
            "sede_label": "GEP Arganda",
        },
        {
            "deal_id": "D-200",
            "training_address": "Polígono Industrial Norte, nave 4",
            "sede_label": "In Company",
        },
        {
            "deal_id": "D-300",
            "training_address": "C/ Moratín, 100, 08206 Sabadell, Barcelona",
            "sede_label": "GEP Sabadell",
        },
    ]


def get_productos() -> List[Dict[str, Any]]:
    """Simula productos de presupuesto; el nombre alimenta el nombre de sesión."""
    return [
        {"id": "P-1", "deal_id": "D-100", "name": "Prevención de Riesgos", "code": "PRL-01"},
        {"id": "P-2", "deal_id": "D-200", "name": "Carretillas Elevadoras", "code": "CARR-02"},
        {"id": "P-3", "deal_id": "D-300", "name": None, "code": "EXT-03"},
    ]


def get_salas() -> List[str]:
    return ["SALA-1", "SALA-2"]


def get_formadores() -> List[str]:
    return ["F1", "F2", "F3"]


def get_unidades_moviles() -> List[str]:
    return [DEFAULT_UNIT_ID, "UM-2"]


def get_catalogo() -> Dict[str, Any]:
    """Catálogo completo con el formato de los escenarios de `fixtures`."""
    return {
        "deals": get_deals(),
        "productos": get_productos(),
        "salas": get_salas(),
        "formadores": get_formadores(),
        "unidades": get_unidades_moviles(),
        "sesiones": [],
    }
