"""Pre-account payment submissions.

State machine:

    pending --approve--> approved --create_account--> account_created
    pending --reject---> rejected

The prospective password is hashed on receipt; the hash is carried over to the
provisioned user so the submitter can log in with what they typed.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from undercovered.auth.crud import create_user, find_conflicting_user
from undercovered.auth.security import hash_password
from undercovered.db import dump_json, insert_returning_id, load_json
from undercovered.errors import NotFound, ValidationError
from undercovered.media.storage import StoredFile
from undercovered.util.normalization import (
    check_length,
    clean_text,
    field_error,
    is_valid_email,
    is_valid_username,
    normalize_email,
    normalize_username,
)
from undercovered.util.time import utcnow_iso


def _debug(msg: str) -> None:
    print(f"[contact] {msg}")


SELECTED_PLANS = ("monthly", "6month")
PAYMENT_METHODS = ("interac", "paypal")
STATUSES = ("pending", "approved", "rejected", "account_created")
ACTIONS = ("approve", "reject", "create_account")


def validate_submission(
    *,
    username: Optional[str],
    password: Optional[str],
    email: Optional[str],
    selected_plan: Optional[str],
    payment_method: Optional[str],
    payment_confirmation: Optional[str],
) -> List[Dict[str, Any]]:
    errors: List[Dict[str, Any]] = []
    if not is_valid_username(username):
        errors.append(field_error("username", "Username must be 3-30 characters and contain only letters and numbers"))
    if len(password or "") < 6:
        errors.append(field_error("password", "Password must be at least 6 characters long"))
    if not is_valid_email(email):
        errors.append(field_error("email", "Please provide a valid email"))
    if selected_plan not in SELECTED_PLANS:
        errors.append(field_error("selected_plan", "Selected plan must be monthly or 6month"))
    if payment_method not in PAYMENT_METHODS:
        errors.append(field_error("payment_method", "Payment method must be interac or paypal"))
    check_length(
        errors,
        "payment_confirmation",
        clean_text(payment_confirmation),
        min_len=1,
        max_len=500,
        message="Payment confirmation is required",
    )
    return errors


def public_submission(row: Any | Dict[str, Any]) -> Dict[str, Any]:
    d = dict(row)
    d.pop("password_hash", None)
    return {
        "submission_id": int(d["submission_id"]),
        "username": d.get("username"),
        "email": d.get("email"),
        "phone": d.get("phone"),
        "selected_plan": d.get("selected_plan"),
        "payment_method": d.get("payment_method"),
        "payment_confirmation": d.get("payment_confirmation"),
        "confirmation_file": load_json(d.get("confirmation_file_json"), None),
        "status": d.get("status"),
        "notes": d.get("notes") or "",
        "processed_at": d.get("processed_at"),
        "created_user_id": d.get("created_user_id"),
        "submitted_at": d.get("submitted_at"),
    }


def get_submission_row(conn: Any, submission_id: int) -> Optional[Any]:
    return conn.execute(
        "SELECT * FROM contact_submissions WHERE submission_id=?",
        (int(submission_id),),
    ).fetchone()


def create_submission(
    conn: Any,
    *,
    username: str,
    password: str,
    email: str,
    selected_plan: str,
    payment_method: str,
    payment_confirmation: str,
    phone: Optional[str] = None,
    confirmation_file: Optional[StoredFile] = None,
) -> Dict[str, Any]:
    now = utcnow_iso()
    file_json = None
    if confirmation_file is not None:
        file_json = dump_json(
            {
                "filename": confirmation_file.filename,
                "original_name": confirmation_file.original_name,
                "size": confirmation_file.size,
                "mimetype": confirmation_file.mimetype,
                "path": confirmation_file.path,
            }
        )

    submission_id = insert_returning_id(
        conn,
        """
        INSERT INTO contact_submissions (
            username, email, password_hash, phone, selected_plan, payment_method,
            payment_confirmation, confirmation_file_json, status, submitted_at, updated_at
        )
        VALUES (?,?,?,?,?,?,?,?,'pending',?,?)
        """,
        (
            normalize_username(username),
            normalize_email(email),
            hash_password(password),
            (phone or "").strip() or None,
            selected_plan,
            payment_method,
            clean_text(payment_confirmation),
            file_json,
            now,
            now,
        ),
        "submission_id",
    )
    _debug(f"New submission id={submission_id} plan={selected_plan} has_file={confirmation_file is not None}")
    row = get_submission_row(conn, submission_id)
    assert row is not None
    return public_submission(row)


def list_submissions(conn: Any, *, status: Optional[str] = None) -> List[Dict[str, Any]]:
    if status:
        rows = conn.execute(
            "SELECT * FROM contact_submissions WHERE status=? ORDER BY submitted_at DESC, submission_id DESC",
            (status,),
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM contact_submissions ORDER BY submitted_at DESC, submission_id DESC"
        ).fetchall()
    return [public_submission(r) for r in rows]


def _set_status(conn: Any, submission_id: int, status: str, notes: str, created_user_id: Optional[int] = None) -> None:
    now = utcnow_iso()
    if created_user_id is None:
        conn.execute(
            "UPDATE contact_submissions SET status=?, notes=?, processed_at=?, updated_at=? WHERE submission_id=?",
            (status, notes, now, now, int(submission_id)),
        )
    else:
        conn.execute(
            """
            UPDATE contact_submissions
            SET status=?, notes=?, processed_at=?, updated_at=?, created_user_id=?
            WHERE submission_id=?
            """,
            (status, notes, now, now, int(created_user_id), int(submission_id)),
        )


def apply_action(conn: Any, submission_id: int, *, action: str, notes: Optional[str] = None) -> Dict[str, Any]:
    """Advance a submission. Returns {"submission": ..., "user": ... | None}."""
    if action not in ACTIONS:
        raise ValidationError("Invalid action")

    row = get_submission_row(conn, submission_id)
    if row is None:
        raise NotFound("Submission not found")

    status = row["status"]
    user: Optional[Dict[str, Any]] = None

    if action in ("approve", "reject"):
        if status != "pending":
            raise ValidationError(f"Only pending submissions can be {'approved' if action == 'approve' else 'rejected'}")
        new_status = "approved" if action == "approve" else "rejected"
        _set_status(conn, submission_id, new_status, clean_text(notes))
        _debug(f"Submission id={submission_id} {new_status}")
    else:
        if status not in ("approved", "account_created"):
            raise ValidationError("Submission must be approved before creating account")
        if find_conflicting_user(conn, email=row["email"], username=row["username"]) is not None:
            raise ValidationError("User with this email or username already exists")
        if status != "approved":
            raise ValidationError("Submission must be approved before creating account")

        user = create_user(
            conn,
            username=row["username"],
            email=row["email"],
            password_hash=row["password_hash"],
            first_name=row["username"],
            last_name="",
            phone=row["phone"],
            plan=row["selected_plan"],
            subscription_status="active",
            created_from_submission_id=int(row["submission_id"]),
        )
        _set_status(
            conn,
            submission_id,
            "account_created",
            clean_text(notes) or "Account created successfully",
            created_user_id=int(user["user_id"]),
        )
        _debug(f"Account created from submission id={submission_id} user_id={user['user_id']} plan={user['subscription']['plan']}")

    updated = get_submission_row(conn, submission_id)
    assert updated is not None
    return {"submission": public_submission(updated), "user": user}
