from __future__ import annotations

import random
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, List, Optional, Sequence, Tuple

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_UNIT_ID = "52377f13-05dd-4830-88aa-0f5c78bee750"
IN_COMPANY_LABELS = ("In Company", "In Company - Unidad Móvil", "In Company - Unidad Movil")


class Settings(BaseSettings):
    """Configuración del motor, leída de variables `SESIONES_*` o `.env`."""

    model_config = SettingsConfigDict(
        env_prefix="SESIONES_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    default_unit_ids: List[str] = Field(
        default_factory=lambda: [DEFAULT_UNIT_ID],
        description="Unidades móviles asignadas a cada fila importada",
    )
    in_company_labels: List[str] = Field(
        default_factory=lambda: list(IN_COMPANY_LABELS),
        description="Sedes que no necesitan sala física",
    )
    nombre_base_fallback: str = Field(
        default="Sesión",
        description="Nombre base si el producto no tiene nombre ni código",
    )
    log_level: str = Field(default="INFO", description="Nivel de logging")


@lru_cache
def get_settings() -> Settings:
    return Settings()


SelectorSala = Callable[[Sequence[str]], Optional[str]]


def elegir_sala_aleatoria(salas: Sequence[str]) -> Optional[str]:
    """Elige una sala con probabilidad uniforme; None si no hay salas."""
    if not salas:
        return None
    return random.choice(list(salas))


@dataclass(frozen=True)
class ConfiguracionImportacion:
    """Parámetros explícitos del importador masivo.

    - unidad_ids: unidades móviles que se vinculan a cada sesión importada.
    - selector_sala: puerto para preasignar sala (aleatorio por defecto).
    - etiquetas_in_company / nombre_base_fallback: ver `Settings`.
    """

    unidad_ids: Tuple[str, ...] = (DEFAULT_UNIT_ID,)
    selector_sala: SelectorSala = elegir_sala_aleatoria
    etiquetas_in_company: Tuple[str, ...] = IN_COMPANY_LABELS
    nombre_base_fallback: str = "Sesión"

    @classmethod
    def desde_settings(
        cls, settings: Settings, selector_sala: Optional[SelectorSala] = None
    ) -> "ConfiguracionImportacion":
        return cls(
            unidad_ids=tuple(settings.default_unit_ids),
            selector_sala=selector_sala or elegir_sala_aleatoria,
            etiquetas_in_company=tuple(settings.in_company_labels),
            nombre_base_fallback=settings.nombre_base_fallback,
        )
