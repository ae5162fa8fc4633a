import csv
import io
import os
import uuid
from pathlib import Path
from typing import Optional, List, Dict
from urllib.parse import unquote, urlparse
from fastapi import HTTPException, status
from fastapi.responses import StreamingResponse
from openpyxl import Workbook
from sqlalchemy.orm import Session
from models import ActivityLog, User
import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

AWS_REGION = os.environ.get("AWS_REGION")
S3_BUCKET_NAME = os.environ.get("S3_BUCKET_NAME")
S3_ACCESS_KEY = os.environ.get("S3_ACCESS_KEY") or os.environ.get("AWS_ACCESS_KEY_ID")
S3_SECRET_KEY = os.environ.get("S3_SECRET_KEY") or os.environ.get("AWS_SECRET_ACCESS_KEY")

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

S3_CLIENT = None
if AWS_REGION and S3_BUCKET_NAME and S3_ACCESS_KEY and S3_SECRET_KEY:
    s3_config = Config(signature_version="s3v4", s3={"addressing_style": "virtual"})
    S3_CLIENT = boto3.client(
        "s3",
        region_name=AWS_REGION,
        aws_access_key_id=S3_ACCESS_KEY,
        aws_secret_access_key=S3_SECRET_KEY,
        endpoint_url=f"https://s3.{AWS_REGION}.amazonaws.com",
        config=s3_config,
    )


def log_activity(
    db: Session,
    actor: Optional[User],
    action: str,
    event_id: Optional[str] = None,
    method: Optional[str] = None,
    path: Optional[str] = None,
    meta: Optional[dict] = None,
):
    db.add(ActivityLog(
        actor_id=actor.id if actor else None,
        actor_email=actor.email if actor else "",
        event_id=event_id,
        action=action,
        method=method,
        path=path,
        meta=meta
    ))
    db.commit()


def _require_s3() -> None:
    if not S3_CLIENT or not S3_BUCKET_NAME or not AWS_REGION:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="S3 not configured")


def _bucket_url(key: str) -> str:
    return f"https://{S3_BUCKET_NAME}.s3.{AWS_REGION}.amazonaws.com/{key}"


def _bucket_key(url: Optional[str]) -> Optional[str]:
    """Object key for a URL inside the configured bucket, else None."""
    if not url or not S3_BUCKET_NAME:
        return None
    parsed = urlparse(url)
    host = (parsed.netloc or "").lower()
    key = (parsed.path or "").lstrip("/")
    bucket = S3_BUCKET_NAME.lower()
    if key and (host == f"{bucket}.s3.amazonaws.com" or host.startswith(f"{bucket}.s3.")):
        return unquote(key)
    return None


def _presign(operation: str, params: Dict[str, str], expires_in: int, failure: str) -> str:
    try:
        return S3_CLIENT.generate_presigned_url(
            operation,
            Params={"Bucket": S3_BUCKET_NAME, **params},
            ExpiresIn=expires_in,
        )
    except (BotoCoreError, ClientError) as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=failure) from exc


def generate_download_url(url: Optional[str], expires_in: int = 3600) -> Optional[str]:
    """Presign stored bucket URLs; anything hosted elsewhere is returned as is."""
    key = _bucket_key(url)
    if not key or not S3_CLIENT:
        return url
    return _presign("get_object", {"Key": key}, expires_in, "Failed to create download URL")


def generate_presigned_put_url(
    key_prefix: str,
    filename: str,
    content_type: str,
    allowed_types: Optional[List[str]] = None,
    expires_in: int = 600
) -> Dict[str, str]:
    _require_s3()
    if not filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing filename")
    if not content_type:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing content type")
    if allowed_types and content_type not in allowed_types:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid file type")

    key = f"{key_prefix.rstrip('/')}/{uuid.uuid4().hex}{Path(filename).suffix.lower()}"
    upload_url = _presign(
        "put_object",
        {"Key": key, "ContentType": content_type},
        expires_in,
        "Failed to create presigned URL",
    )
    return {
        "upload_url": upload_url,
        "public_url": _bucket_url(key),
        "key": key,
        "content_type": content_type
    }


def export_to_csv(headers: List[str], rows: List[List[object]]) -> bytes:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(headers)
    writer.writerows(rows)
    return output.getvalue().encode("utf-8")


def export_to_xlsx(headers: List[str], rows: List[List[object]], title: Optional[str] = None) -> bytes:
    wb = Workbook()
    ws = wb.active
    if title:
        ws.title = title[:31]
    ws.append(headers)
    for row in rows:
        ws.append(row)
    out = io.BytesIO()
    wb.save(out)
    out.seek(0)
    return out.read()


def export_response(headers: List[str], rows: List[List[object]], fmt: str, basename: str) -> StreamingResponse:
    if fmt == "xlsx":
        content = export_to_xlsx(headers, rows)
        media_type = XLSX_MEDIA_TYPE
        filename = f"{basename}.xlsx"
    elif fmt == "csv":
        content = export_to_csv(headers, rows)
        media_type = "text/csv"
        filename = f"{basename}.csv"
    else:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="format must be csv or xlsx")
    return StreamingResponse(io.BytesIO(content), media_type=media_type, headers={"Content-Disposition": f"attachment; filename={filename}"})
