import logging
import os
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import func
from sqlalchemy.orm import Session

from database import get_db
from models import Material, MaterialDownload, User, Workspace
from rate_limiter import check_rate_limit
from registration_service import get_event_or_404
from schemas import MaterialCreate, MaterialResponse, MaterialUploadUrlRequest
from security import get_optional_user, require_event_organizer, require_user
from utils import generate_download_url, generate_presigned_put_url, log_activity
from validation import first_invalid_uuid

router = APIRouter()
logger = logging.getLogger(__name__)

MATERIAL_DOWNLOAD_RATE_LIMIT = int(os.environ.get("MATERIAL_DOWNLOAD_RATE_LIMIT", "30"))
MATERIAL_DOWNLOAD_RATE_WINDOW_SECONDS = float(os.environ.get("MATERIAL_DOWNLOAD_RATE_WINDOW_SECONDS", "60"))
TRACKED_ID_FIELDS = ("material_id", "event_id", "workspace_id")


def _error(status_code: int, message: str, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message}, headers=headers)


@router.post("/events/{event_id}/materials", response_model=MaterialResponse, status_code=status.HTTP_201_CREATED)
def create_material(
    event_id: str,
    payload: MaterialCreate,
    request: Request,
    user: User = Depends(require_event_organizer),
    db: Session = Depends(get_db),
):
    if payload.workspace_id:
        workspace = db.query(Workspace).filter(Workspace.id == payload.workspace_id, Workspace.event_id == event_id).first()
        if not workspace:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workspace not found")
    material = Material(event_id=event_id, workspace_id=payload.workspace_id, title=payload.title.strip(), file_url=payload.file_url)
    db.add(material)
    db.commit()
    db.refresh(material)
    log_activity(db, user, "create_material", event_id=event_id, method="POST", path=request.url.path, meta={"material_id": material.id})
    return material


@router.get("/events/{event_id}/materials", response_model=List[MaterialResponse])
def list_materials(event_id: str, user: User = Depends(require_user), db: Session = Depends(get_db)):
    get_event_or_404(db, event_id)
    return db.query(Material).filter(Material.event_id == event_id).order_by(Material.created_at.asc()).all()


@router.post("/events/{event_id}/materials/upload-url")
def material_upload_url(
    event_id: str,
    payload: MaterialUploadUrlRequest,
    user: User = Depends(require_event_organizer),
):
    return generate_presigned_put_url(f"materials/{event_id}", payload.filename, payload.content_type)


@router.get("/events/{event_id}/materials/stats")
def material_stats(event_id: str, user: User = Depends(require_event_organizer), db: Session = Depends(get_db)):
    unique_users = dict(
        db.query(MaterialDownload.material_id, func.count(func.distinct(MaterialDownload.user_id)))
        .join(Material, Material.id == MaterialDownload.material_id)
        .filter(Material.event_id == event_id)
        .group_by(MaterialDownload.material_id)
        .all()
    )
    materials = db.query(Material).filter(Material.event_id == event_id).order_by(Material.download_count.desc(), Material.title.asc()).all()
    return [
        {
            "material_id": material.id,
            "title": material.title,
            "download_count": material.download_count,
            "unique_downloaders": unique_users.get(material.id, 0),
        }
        for material in materials
    ]


@router.post("/functions/track-material-download")
def track_material_download(
    request: Request,
    payload: Optional[Dict[str, Any]] = Body(None),
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    if not user:
        return _error(status.HTTP_401_UNAUTHORIZED, "Unauthorized")

    limit = check_rate_limit(user.id, "track-material-download", MATERIAL_DOWNLOAD_RATE_LIMIT, MATERIAL_DOWNLOAD_RATE_WINDOW_SECONDS)
    if not limit["allowed"]:
        return _error(
            status.HTTP_429_TOO_MANY_REQUESTS,
            "Rate limit exceeded",
            headers={"Retry-After": str(max(1, int(limit["retry_after"] + 0.999)))},
        )

    body = payload or {}
    invalid = first_invalid_uuid(body, TRACKED_ID_FIELDS, required=("material_id",))
    if invalid:
        return _error(status.HTTP_400_BAD_REQUEST, f"Invalid {invalid} format")

    material = db.query(Material).filter(Material.id == body["material_id"]).first()
    if not material:
        return _error(status.HTTP_404_NOT_FOUND, "Material not found")

    download = MaterialDownload(
        material_id=material.id,
        user_id=user.id,
        event_id=body.get("event_id") or material.event_id,
        workspace_id=body.get("workspace_id") or material.workspace_id,
        user_agent=(request.headers.get("user-agent") or "")[:500] or None,
        ip_address=request.client.host if request.client else None,
    )
    db.add(download)
    db.query(Material).filter(Material.id == material.id).update(
        {Material.download_count: Material.download_count + 1}, synchronize_session=False
    )
    db.commit()
    db.refresh(material)
    db.refresh(download)
    logger.info("Material %s downloaded by %s", material.id, user.id)

    return {
        "success": True,
        "data": {
            "download_id": download.id,
            "download_count": material.download_count,
            "download_url": generate_download_url(material.file_url),
        },
    }
