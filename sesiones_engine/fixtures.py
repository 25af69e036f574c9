from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional


def load_scenario(scenario_id: str) -> Optional[Dict[str, Any]]:
    """Carga un escenario de pruebas desde docs/test_scenarios.json.

    Estructura esperada (mismo formato que `mock_db.get_catalogo`):
    {
      "scenarios": {
        "id": {
          "deals": [ {"deal_id": str, "training_address": str, "sede_label": str} ],
          "productos": [ {"id": str, "deal_id": str, "name": str, "code": str} ],
          "salas": [str], "formadores": [str], "unidades": [str],
          "sesiones": [ {"deal_id": str, "deal_product_id": str, "inicio": iso_datetime,
                         "fin": iso_datetime, "sala_id": str, "formador_ids": [str],
                         "unidad_ids": [str], "estado": str} ]
        }
      }
    }
    """
    root = Path(__file__).resolve().parent.parent
    scenarios_path = root / "docs" / "test_scenarios.json"
    if not scenarios_path.exists():
        return None
    try:
        with scenarios_path.open("r", encoding="utf-8") as f:
            payload = json.load(f)
    except (OSError, json.JSONDecodeError):
        logging.warning("Escenarios: no se pudo leer %s", scenarios_path, exc_info=True)
        return None
    return payload.get("scenarios", {}).get(scenario_id)
