# backend/schemas/reports.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class ReportStatusUpdate(BaseModel):
    # Parsed against ReportStatus in the lifecycle so bad values surface as 400.
    estado: str
    comentario_autoridad: Optional[str] = Field(default=None, max_length=1000)


class AssignIn(BaseModel):
    autoridad_id: Optional[str] = None  # defaults to the caller


class BulkActionIn(BaseModel):
    report_ids: List[int] = Field(..., min_length=1, max_length=100)
    estado: str
    comentario_autoridad: Optional[str] = Field(default=None, max_length=1000)


class ReportOut(BaseModel):
    id: int
    usuario_id: str
    descripcion: str
    latitud: float
    longitud: float
    direccion: Optional[str] = None
    tipo_estimado: Optional[str] = None
    imagen_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    estado: str
    comentario_autoridad: Optional[str] = None
    autoridad_asignada: Optional[str] = None
    fecha_resolucion: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def from_report(cls, report) -> "ReportOut":
        return cls(
            id=report.id,
            usuario_id=report.user_id,
            descripcion=report.description,
            latitud=report.latitude,
            longitud=report.longitude,
            direccion=report.address,
            tipo_estimado=report.waste_type,
            imagen_url=report.image_url,
            thumbnail_url=report.thumbnail_url,
            estado=report.status,
            comentario_autoridad=report.authority_comment,
            autoridad_asignada=report.assigned_authority_id,
            fecha_resolucion=report.resolved_at,
            created_at=report.created_at,
            updated_at=report.updated_at,
        )


class ReportCreated(BaseModel):
    message: str
    reporte: ReportOut
    puntos_ganados: int
    imagen_subida: bool


class ReportUpdated(BaseModel):
    message: str
    reporte: ReportOut
    puntos_otorgados: int = 0


class ReportList(BaseModel):
    reportes: List[ReportOut]
    total: int


class BulkItemOut(BaseModel):
    report_id: int
    ok: bool
    code: Optional[str] = None
    message: Optional[str] = None


class BulkActionOut(BaseModel):
    procesados: int
    exitosos: int
    fallidos: int
    resultados: List[BulkItemOut]
