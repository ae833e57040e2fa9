"""
Report lifecycle.

Reported -> InProgress -> Resolved | Rejected, with Reported allowed to jump
straight to either terminal state. Points are awarded synchronously in the
same transaction as the report write; notifications and achievement
evaluation are scheduled fire-and-forget after the commit.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from fastapi import BackgroundTasks
from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import (
    AppError,
    DependencyError,
    DuplicateAwardError,
    InactiveUserError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from ..models import Report, User
from ..models.enums import ALLOWED_TRANSITIONS, LedgerAction, PointsRuleKey, ReportStatus, Role
from ..workers import jobs
from . import ledger
from .image_host import ImageHost, UploadedImage, validate_image
from .side_effects import fire_and_forget

logger = logging.getLogger(__name__)


@dataclass
class ImageUpload:
    data: bytes
    content_type: Optional[str] = None
    filename: Optional[str] = None


@dataclass
class CreateResult:
    report: Report
    points: int
    image_uploaded: bool


@dataclass
class TransitionResult:
    report: Report
    previous: ReportStatus
    points: int = 0


@dataclass
class BulkItemResult:
    report_id: int
    ok: bool
    code: Optional[str] = None
    message: Optional[str] = None


@dataclass
class BulkResult:
    items: List[BulkItemResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for i in self.items if i.ok)

    @property
    def failed(self) -> int:
        return len(self.items) - self.succeeded


# ---------- Input validation ----------

def _validate_description(value) -> str:
    text = (value or "").strip()
    if not (settings.DESCRIPTION_MIN_LENGTH <= len(text) <= settings.DESCRIPTION_MAX_LENGTH):
        raise ValidationError(
            f"Description must be between {settings.DESCRIPTION_MIN_LENGTH} and "
            f"{settings.DESCRIPTION_MAX_LENGTH} characters",
            code="INVALID_DESCRIPTION",
        )
    return text


def _validate_coordinate(value, low: float, high: float, code: str, label: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a number", code=code)
    if number != number or not (low <= number <= high):
        raise ValidationError(f"{label} must be between {low} and {high}", code=code)
    return number


def _optional_text(value, max_length: int = 255) -> Optional[str]:
    text = (value or "").strip()
    return text[:max_length] if text else None


def parse_status(value) -> ReportStatus:
    try:
        return ReportStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in ReportStatus)
        raise ValidationError(f"estado must be one of: {allowed}", code="INVALID_STATUS")


# ---------- Creation ----------

def _store_image(host: ImageHost, image: ImageUpload):
    """Upload main image and thumbnail; None on host failure."""
    uploaded: List[UploadedImage] = []
    try:
        uploaded.append(host.upload(image.data))
        uploaded.append(host.upload_thumbnail(image.data))
    except DependencyError as exc:
        logger.warning("Image upload failed, creating text-only report: %s", exc.message)
        _discard_images(host, uploaded)
        return None
    return uploaded[0], uploaded[1]


def _discard_images(host: ImageHost, uploaded: List[UploadedImage]) -> None:
    for item in uploaded:
        try:
            host.delete(item.public_id)
        except Exception:
            logger.exception("Could not delete orphaned image %s", item.public_id)


def create_report(
    db: Session,
    user: User,
    description,
    latitude,
    longitude,
    address=None,
    waste_type=None,
    image: Optional[ImageUpload] = None,
    host: Optional[ImageHost] = None,
    background_tasks: Optional[BackgroundTasks] = None,
) -> CreateResult:
    if not user.is_active:
        raise InactiveUserError("Inactive accounts cannot create reports")

    text = _validate_description(description)
    lat = _validate_coordinate(latitude, -90.0, 90.0, "INVALID_LATITUDE", "Latitude")
    lng = _validate_coordinate(longitude, -180.0, 180.0, "INVALID_LONGITUDE", "Longitude")

    stored = None
    if image is not None and image.data:
        validate_image(image.data, image.content_type)
        if host is None:
            logger.warning("No image host configured, creating text-only report")
        else:
            stored = _store_image(host, image)
    else:
        logger.info("No image provided, creating text-only report for user %s", user.id)

    report = Report(
        user_id=user.id,
        description=text,
        latitude=lat,
        longitude=lng,
        address=_optional_text(address),
        waste_type=_optional_text(waste_type, 100),
        status=ReportStatus.REPORTED.value,
    )
    if stored:
        main, thumb = stored
        report.image_url, report.image_public_id = main.url, main.public_id
        report.thumbnail_url, report.thumbnail_public_id = thumb.url, thumb.public_id

    rule = PointsRuleKey.REPORT_WITH_PHOTO if stored else PointsRuleKey.REPORT_WITHOUT_PHOTO
    points = ledger.rule_points(db, rule)
    level_before = user.level

    try:
        db.add(report)
        db.flush()
        if points > 0:
            ledger.award(
                db,
                user.id,
                points,
                LedgerAction.REPORT_CREATED,
                description="Reporte creado con foto" if stored else "Reporte creado",
                report_id=report.id,
                reference=f"report_created:{report.id}",
                commit=False,
            )
        db.commit()
    except Exception:
        db.rollback()
        if stored:
            _discard_images(host, list(stored))
        raise

    db.refresh(report)
    db.refresh(user)
    logger.info("Report %s created by user %s (+%s points)", report.id, user.id, points)

    fire_and_forget(background_tasks, jobs.notify_authorities_new_report, report.id)
    fire_and_forget(background_tasks, jobs.evaluate_user_achievements, user.id)
    if user.level > level_before:
        fire_and_forget(background_tasks, jobs.notify_level_up, user.id, user.level)

    return CreateResult(report=report, points=points, image_uploaded=stored is not None)


# ---------- Transitions ----------

def _check_rejection_comment(comment: Optional[str]) -> None:
    if not settings.REJECTION_COMMENT_REQUIRED:
        return
    if len((comment or "").strip()) < settings.REJECTION_COMMENT_MIN_LENGTH:
        raise ValidationError(
            f"Rejecting a report requires a comment of at least "
            f"{settings.REJECTION_COMMENT_MIN_LENGTH} characters",
            code="REJECTION_COMMENT_REQUIRED",
        )


def get_active_report(db: Session, report_id: int) -> Report:
    report = db.query(Report).filter(Report.id == report_id, Report.is_active.is_(True)).first()
    if report is None:
        raise NotFoundError("Report not found", code="REPORTE_NOT_FOUND")
    return report


def _award_resolution(db: Session, report: Report) -> int:
    owner = db.query(User).filter(User.id == report.user_id).first()
    if owner is None or not owner.is_active:
        logger.info("Owner of report %s is inactive, no resolution points", report.id)
        return 0
    points = ledger.rule_points(db, PointsRuleKey.REPORT_RESOLVED)
    if points <= 0:
        return 0
    try:
        ledger.award(
            db,
            owner.id,
            points,
            LedgerAction.REPORT_RESOLVED,
            description="Reporte resuelto",
            report_id=report.id,
            reference=f"report_resolved:{report.id}",
            commit=False,
        )
    except DuplicateAwardError:
        logger.warning("Resolution points for report %s were already awarded", report.id)
        return 0
    return points


def transition_report(
    db: Session,
    report_id: int,
    estado,
    comment: Optional[str] = None,
    actor: Optional[User] = None,
    background_tasks: Optional[BackgroundTasks] = None,
) -> TransitionResult:
    target = parse_status(estado)
    report = get_active_report(db, report_id)
    current = ReportStatus(report.status)

    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Cannot change a report from {current.value} to {target.value}",
            details={"from": current.value, "to": target.value},
        )
    if target == ReportStatus.REJECTED:
        _check_rejection_comment(comment)

    now = datetime.utcnow()
    values = {"status": target.value, "updated_at": now}
    if comment is not None:
        values["authority_comment"] = comment.strip() or None
    if target.is_terminal:
        values["resolved_at"] = now
    if actor is not None and report.assigned_authority_id is None:
        values["assigned_authority_id"] = actor.id

    # Compare-and-swap on the status we validated against.
    result = db.execute(
        update(Report)
        .where(Report.id == report.id, Report.status == current.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise InvalidTransitionError(
            "Report status changed concurrently, reload and retry",
            code="CONCURRENT_TRANSITION",
        )

    owner = db.query(User).filter(User.id == report.user_id).first()
    level_before = owner.level if owner else None

    points = 0
    try:
        if target == ReportStatus.RESOLVED:
            points = _award_resolution(db, report)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(report)
    logger.info(
        "Report %s moved %s -> %s by %s",
        report.id,
        current.value,
        target.value,
        actor.id if actor else "system",
    )

    fire_and_forget(background_tasks, jobs.notify_report_status_change, report.id, target.value, comment)
    if target == ReportStatus.RESOLVED:
        fire_and_forget(background_tasks, jobs.evaluate_user_achievements, report.user_id)
        if owner is not None and points:
            db.refresh(owner)
            if owner.level > level_before:
                fire_and_forget(background_tasks, jobs.notify_level_up, owner.id, owner.level)

    return TransitionResult(report=report, previous=current, points=points)


def bulk_transition(
    db: Session,
    report_ids: List[int],
    estado,
    comment: Optional[str] = None,
    actor: Optional[User] = None,
    background_tasks: Optional[BackgroundTasks] = None,
) -> BulkResult:
    """Apply one transition per report; a failing report does not stop the rest."""
    parse_status(estado)
    result = BulkResult()
    for report_id in dict.fromkeys(report_ids):
        try:
            transition_report(db, report_id, estado, comment, actor, background_tasks)
            result.items.append(BulkItemResult(report_id=report_id, ok=True))
        except AppError as exc:
            db.rollback()
            result.items.append(
                BulkItemResult(report_id=report_id, ok=False, code=exc.code, message=exc.message)
            )
    logger.info("Bulk %s: %s ok, %s failed", estado, result.succeeded, result.failed)
    return result


# ---------- Other report operations ----------

def get_report_for(db: Session, report_id: int, user: User) -> Report:
    """Citizens only see their own reports; others get the same 404."""
    report = get_active_report(db, report_id)
    if user.role == Role.CITIZEN.value and report.user_id != user.id:
        raise NotFoundError("Report not found", code="REPORTE_NOT_FOUND")
    return report


def list_reports(db: Session, user: User, limit: int = 50, offset: int = 0):
    q = db.query(Report).filter(Report.is_active.is_(True))
    if user.role == Role.CITIZEN.value:
        q = q.filter(Report.user_id == user.id)
    total = q.count()
    items = q.order_by(Report.created_at.desc(), Report.id.desc()).offset(offset).limit(limit).all()
    return items, total


def search_reports(
    db: Session,
    estado: Optional[str] = None,
    assigned_to: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
):
    q = db.query(Report).filter(Report.is_active.is_(True))
    if estado:
        q = q.filter(Report.status == parse_status(estado).value)
    if assigned_to:
        q = q.filter(Report.assigned_authority_id == assigned_to)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(
            or_(
                Report.description.ilike(like),
                Report.address.ilike(like),
                Report.waste_type.ilike(like),
            )
        )
    total = q.count()
    items = q.order_by(Report.created_at.desc(), Report.id.desc()).offset(offset).limit(limit).all()
    return items, total


def soft_delete_report(db: Session, report_id: int) -> Report:
    report = get_active_report(db, report_id)
    report.is_active = False
    db.commit()
    db.refresh(report)
    logger.info("Report %s soft-deleted", report_id)
    return report


def assign_report(db: Session, report_id: int, authority_id: str) -> Report:
    report = get_active_report(db, report_id)
    authority = (
        db.query(User)
        .filter(
            User.id == authority_id,
            User.is_active.is_(True),
            User.role.in_([Role.AUTHORITY.value, Role.ADMIN.value]),
        )
        .first()
    )
    if authority is None:
        raise ValidationError("Assignee must be an active authority", code="INVALID_AUTHORITY")
    report.assigned_authority_id = authority.id
    db.commit()
    db.refresh(report)
    logger.info("Report %s assigned to %s", report_id, authority_id)
    return report
