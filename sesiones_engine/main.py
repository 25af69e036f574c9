from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field, ConfigDict
from typing import Any, List, Literal, Optional
from datetime import datetime
import logging

from .config import get_settings
from .engine.engine import EstadoDerivado, EstadoForzado, EstadoSesion
from .errors import ErrorSesion
from .api.adapter import gestionar_actualizacion_sesion
from .api.adapter import gestionar_busqueda_conflictos
from .api.adapter import gestionar_creacion_sesion
from .api.adapter import gestionar_importacion
from .api.adapter import gestionar_renombrado_sesion
from .api.adapter import listar_recursos

app = FastAPI(title="Sesiones Engine API", version="0.1.0")
logging.basicConfig(level=get_settings().log_level)


def _error_http(e: ErrorSesion) -> HTTPException:
    return HTTPException(status_code=e.http_status, detail=e.to_dict())


class SolicitudSesion(BaseModel):
    """Modelo de entrada para crear una sesión.

    - `estado` es opcional: si se envía, se respeta tal cual; si no, se deriva
      de recursos y fechas.
    - `inicio`/`fin` pueden omitirse (sesión sin programar).
    """

    deal_id: str
    deal_product_id: str
    formador_ids: List[str] = []
    unidad_ids: List[str] = []
    sala_id: Optional[str] = None
    inicio: Optional[datetime] = None
    fin: Optional[datetime] = None
    estado: Optional[EstadoSesion] = None

    model_config = ConfigDict(extra="forbid")


class ActualizacionSesion(BaseModel):
    """Cambios parciales sobre una sesión; solo se aplican los campos enviados."""

    inicio: Optional[datetime] = None
    fin: Optional[datetime] = None
    sala_id: Optional[str] = None
    formador_ids: Optional[List[str]] = None
    unidad_ids: Optional[List[str]] = None
    estado: Optional[EstadoSesion] = None

    model_config = ConfigDict(extra="forbid")


class SesionRespuesta(BaseModel):
    sesion_id: str
    deal_id: str
    deal_product_id: str
    nombre_cache: str
    direccion: str
    estado: EstadoSesion
    inicio: Optional[datetime] = None
    fin: Optional[datetime] = None
    sala_id: Optional[str] = None
    formador_ids: List[str] = []
    unidad_ids: List[str] = []


class SolicitudRenombrado(BaseModel):
    nombre_base: str

    model_config = ConfigDict(extra="forbid")


class NombreSesion(BaseModel):
    sesion_id: str
    nombre: str


class SolicitudImportacion(BaseModel):
    """Filas crudas: la validación es por fila y nunca tumba el lote."""

    rows: List[Any]

    model_config = ConfigDict(extra="forbid")


class ResultadoFila(BaseModel):
    index: int
    deal_id: Optional[str] = Field(default=None, serialization_alias="dealId")
    product_id: Optional[str] = Field(default=None, serialization_alias="productId")
    session_id: Optional[str] = Field(default=None, serialization_alias="sessionId")
    status: Literal["success", "error"]
    message: str
    code: Optional[str] = None


class ResumenImportacion(BaseModel):
    total: int
    successes: int
    errors: int


class RespuestaImportacion(BaseModel):
    results: List[ResultadoFila]
    summary: ResumenImportacion


class SolicitudConflictos(BaseModel):
    inicio: datetime
    fin: datetime
    formador_ids: List[str] = []
    sala_ids: List[str] = []
    unidad_ids: List[str] = []
    excluir_sesion_id: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class ConflictoDetalle(BaseModel):
    session_id: str
    deal_id: str
    estado: EstadoSesion
    product_code: Optional[str] = None
    product_name: Optional[str] = None
    inicio: Optional[datetime] = None
    fin: Optional[datetime] = None


class ConflictoRecurso(BaseModel):
    resource_type: Literal["sala", "formador", "unidad_movil"]
    resource_id: str
    conflicts: List[ConflictoDetalle]


class RespuestaConflictos(BaseModel):
    conflictos: List[ConflictoRecurso] = []


class RespuestaRecursos(BaseModel):
    salas: List[str] = []
    formadores: List[str] = []
    unidades_moviles: List[str] = []


@app.post("/api/v1/sesiones", response_model=SesionRespuesta, status_code=201)
async def crear_sesion(solicitud: SolicitudSesion) -> SesionRespuesta:
    """Crea una sesión con sus asignaciones en una única transacción."""
    estado = EstadoForzado(solicitud.estado) if solicitud.estado else EstadoDerivado()
    try:
        creada = gestionar_creacion_sesion(
            deal_id=solicitud.deal_id,
            deal_product_id=solicitud.deal_product_id,
            formador_ids=solicitud.formador_ids,
            unidad_ids=solicitud.unidad_ids,
            sala_id=solicitud.sala_id,
            inicio=solicitud.inicio,
            fin=solicitud.fin,
            estado=estado,
        )
    except ErrorSesion as e:
        raise _error_http(e)
    return SesionRespuesta(**creada)


@app.patch("/api/v1/sesiones/{sesion_id}", response_model=SesionRespuesta)
async def actualizar_sesion(sesion_id: str, cambios: ActualizacionSesion) -> SesionRespuesta:
    enviados = cambios.model_dump(exclude_unset=True)
    estado_forzado = enviados.pop("estado", None)
    estado = EstadoForzado(estado_forzado) if estado_forzado else EstadoDerivado()
    try:
        actualizada = gestionar_actualizacion_sesion(sesion_id, enviados, estado=estado)
    except ErrorSesion as e:
        raise _error_http(e)
    return SesionRespuesta(**actualizada)


@app.post("/api/v1/sesiones/{sesion_id}/nombre", response_model=List[NombreSesion])
async def renombrar_sesion(sesion_id: str, solicitud: SolicitudRenombrado) -> List[NombreSesion]:
    """Cambia el nombre base y devuelve los nombres de todas las sesiones hermanas."""
    try:
        nombres = gestionar_renombrado_sesion(sesion_id, solicitud.nombre_base)
    except ErrorSesion as e:
        raise _error_http(e)
    return [NombreSesion(**n) for n in nombres]


@app.post("/api/v1/sesiones/importar", response_model=RespuestaImportacion)
async def importar_sesiones(solicitud: SolicitudImportacion) -> RespuestaImportacion:
    """Importación masiva: siempre 200, con el resultado de cada fila."""
    resultado = gestionar_importacion(solicitud.rows)
    return RespuestaImportacion(
        results=[ResultadoFila(**r) for r in resultado["results"]],
        summary=ResumenImportacion(**resultado["summary"]),
    )


@app.post("/api/v1/conflictos", response_model=RespuestaConflictos)
async def buscar_conflictos(solicitud: SolicitudConflictos) -> RespuestaConflictos:
    try:
        conflictos = gestionar_busqueda_conflictos(
            inicio=solicitud.inicio,
            fin=solicitud.fin,
            formador_ids=solicitud.formador_ids,
            sala_ids=solicitud.sala_ids,
            unidad_ids=solicitud.unidad_ids,
            excluir_sesion_id=solicitud.excluir_sesion_id,
        )
    except ErrorSesion as e:
        raise _error_http(e)
    return RespuestaConflictos(conflictos=[ConflictoRecurso(**c) for c in conflictos])


@app.get("/api/v1/recursos", response_model=RespuestaRecursos)
async def obtener_recursos() -> RespuestaRecursos:
    return RespuestaRecursos(**listar_recursos())
