from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from pydantic import BaseModel

from undercovered.auth.deps import AuthContext, get_cfg, require_admin
from undercovered.config import Config
from undercovered.contact import crud as contact_crud
from undercovered.db import connect
from undercovered.errors import ValidationError, raise_if_errors
from undercovered.media.storage import FileTooLarge, StoredFile, delete_file, save_upload

from .common import ok


router = APIRouter()

_CONFIRMATION_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp", "application/pdf")
_CONFIRMATION_MAX_SIZE = 10 * 1024 * 1024


class SubmissionActionRequest(BaseModel):
    action: Optional[str] = None
    notes: Optional[str] = None


def _store_confirmation(cfg: Config, upload: Optional[UploadFile]) -> Optional[StoredFile]:
    if upload is None or not upload.filename:
        return None
    mimetype = (upload.content_type or "").lower()
    if mimetype not in _CONFIRMATION_TYPES:
        raise ValidationError("Confirmation file must be an image or PDF")
    try:
        return save_upload(
            upload.file,
            upload_dir=cfg.UPLOAD_DIR,
            public_base_url=cfg.PUBLIC_MEDIA_BASE_URL,
            original_name=upload.filename,
            mimetype=mimetype,
            field_name="confirmation",
            max_size=_CONFIRMATION_MAX_SIZE,
        )
    except FileTooLarge:
        raise ValidationError("Confirmation file cannot exceed 10MB")


@router.post("/payment", status_code=201)
def submit_payment(
    username: Optional[str] = Form(None),
    password: Optional[str] = Form(None),
    email: Optional[str] = Form(None),
    phone: Optional[str] = Form(None),
    selected_plan: Optional[str] = Form(None),
    payment_method: Optional[str] = Form(None),
    payment_confirmation: Optional[str] = Form(None),
    confirmation_file: Optional[UploadFile] = File(None),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    raise_if_errors(
        contact_crud.validate_submission(
            username=username,
            password=password,
            email=email,
            selected_plan=selected_plan,
            payment_method=payment_method,
            payment_confirmation=payment_confirmation,
        )
    )

    stored = _store_confirmation(cfg, confirmation_file)
    try:
        with connect(cfg.DB_DSN) as conn:
            submission = contact_crud.create_submission(
                conn,
                username=username or "",
                password=password or "",
                email=email or "",
                selected_plan=selected_plan or "",
                payment_method=payment_method or "",
                payment_confirmation=payment_confirmation or "",
                phone=phone,
                confirmation_file=stored,
            )
    except Exception:
        if stored is not None:
            delete_file(stored.path)
        raise

    return ok(
        {"submission_id": submission["submission_id"], "status": submission["status"]},
        "Payment information submitted successfully. We will review and contact you soon.",
    )


@router.get("/submissions")
def list_submissions(
    status: Optional[str] = None,
    cfg: Config = Depends(get_cfg),
    ctx: AuthContext = Depends(require_admin),
) -> Dict[str, Any]:
    if status is not None and status not in contact_crud.STATUSES:
        raise ValidationError("Invalid status filter")
    with connect(cfg.DB_DSN) as conn:
        items = contact_crud.list_submissions(conn, status=status)
    return ok({"submissions": items, "count": len(items)})


@router.put("/submissions/{submission_id}")
def update_submission(
    submission_id: int,
    req: SubmissionActionRequest,
    cfg: Config = Depends(get_cfg),
    ctx: AuthContext = Depends(require_admin),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        out = contact_crud.apply_action(conn, submission_id, action=req.action or "", notes=req.notes)

    messages = {
        "approve": "Submission approved",
        "reject": "Submission rejected",
        "create_account": "User account created successfully",
    }
    return ok(out, messages[req.action or ""])
