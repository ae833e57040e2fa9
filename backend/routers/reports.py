# backend/routers/reports.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, UploadFile, status
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import get_current_user, pagination_params, require_admin, require_staff
from ..models.user import User
from ..schemas.reports import (
    ReportCreated,
    ReportList,
    ReportOut,
    ReportStatusUpdate,
    ReportUpdated,
)
from ..services import lifecycle
from ..services.image_host import ImageHost, get_image_host

router = APIRouter(prefix="/reports", tags=["reports"])


@router.post("", response_model=ReportCreated, status_code=status.HTTP_201_CREATED)
def create_report(
    background_tasks: BackgroundTasks,
    descripcion: Optional[str] = Form(None),
    latitud: Optional[str] = Form(None),
    longitud: Optional[str] = Form(None),
    direccion: Optional[str] = Form(None),
    tipo_estimado: Optional[str] = Form(None),
    imagen: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    host: ImageHost = Depends(get_image_host),
):
    image = None
    if imagen is not None and imagen.filename:
        data = imagen.file.read()
        image = lifecycle.ImageUpload(data=data, content_type=imagen.content_type, filename=imagen.filename)

    result = lifecycle.create_report(
        db,
        current_user,
        descripcion,
        latitud,
        longitud,
        address=direccion,
        waste_type=tipo_estimado,
        image=image,
        host=host,
        background_tasks=background_tasks,
    )
    return ReportCreated(
        message="Reporte creado exitosamente",
        reporte=ReportOut.from_report(result.report),
        puntos_ganados=result.points,
        imagen_subida=result.image_uploaded,
    )


@router.get("", response_model=ReportList)
def list_reports(
    page: dict = Depends(pagination_params),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    items, total = lifecycle.list_reports(db, current_user, limit=page["limit"], offset=page["offset"])
    return ReportList(reportes=[ReportOut.from_report(r) for r in items], total=total)


@router.get("/{report_id}", response_model=ReportOut)
def get_report(
    report_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return ReportOut.from_report(lifecycle.get_report_for(db, report_id, current_user))


@router.patch("/{report_id}", response_model=ReportUpdated)
def update_report_status(
    report_id: int,
    payload: ReportStatusUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: User = Depends(require_staff),
):
    result = lifecycle.transition_report(
        db,
        report_id,
        payload.estado,
        payload.comentario_autoridad,
        actor=actor,
        background_tasks=background_tasks,
    )
    return ReportUpdated(
        message="Estado del reporte actualizado",
        reporte=ReportOut.from_report(result.report),
        puntos_otorgados=result.points,
    )


@router.delete("/{report_id}")
def delete_report(
    report_id: int,
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    lifecycle.soft_delete_report(db, report_id)
    return {"status": "ok", "id": report_id}
