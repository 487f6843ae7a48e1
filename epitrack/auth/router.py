import secrets
import smtplib
from datetime import datetime, timedelta, timezone
from email.message import EmailMessage
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..config import settings
from ..errors import AuthenticationError, ValidationError
from ..models.models import User, RevokedToken, PasswordReset
from ..schemas.auth import (
    LoginRequest,
    EmployeeLoginRequest,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    ResetPasswordRequest,
)
from ..services.audit import create_audit_log
from ..services.users import user_to_dict
from .security import (
    get_password_hash,
    verify_password,
    create_access_token,
    get_current_user,
    get_token_payload,
)
from ..logging import structlog


router = APIRouter(prefix="/auth", tags=["auth"])

FORGOT_PASSWORD_MESSAGE = "If the email is registered you will receive instructions to reset your password"


def _token_response(user: User, message: str) -> dict:
    return {
        "message": message,
        "token": create_access_token(str(user.id), role=user.role),
        "token_type": "bearer",
        "expires_in": settings.jwt_ttl_seconds,
        "user": user_to_dict(user, include_permissions=True),
    }


def _login(user: Optional[User], password: str, db: Session) -> dict:
    if not user or not verify_password(password, user.password_hash):
        raise AuthenticationError("Invalid credentials", reason="invalid_credentials")
    if not user.is_active:
        raise AuthenticationError("Your account has been deactivated", reason="user_inactive")
    user.last_login_at = datetime.now(timezone.utc)
    db.commit()
    structlog.get_logger().info("user_login", user_id=str(user.id))
    return _token_response(user, "Login successful")


@router.post("/login")
def login(req: LoginRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == req.email.lower()).first()
    return _login(user, req.password, db)


@router.post("/login-employee")
def login_employee(req: EmployeeLoginRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.employee_id == req.employee_id.strip()).first()
    return _login(user, req.password, db)


@router.post("/refresh")
def refresh(user: User = Depends(get_current_user)):
    return _token_response(user, "Token refreshed")


@router.post("/logout")
def logout(
    payload: dict = Depends(get_token_payload),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    jti = payload.get("jti")
    if jti:
        db.add(RevokedToken(
            user_id=user.id,
            jti=jti,
            expires_at=datetime.fromtimestamp(int(payload.get("exp", 0)), tz=timezone.utc),
        ))
        db.commit()
    return {"message": "Logout successful"}


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    return {"user": user_to_dict(user, include_permissions=True)}


@router.post("/change-password")
def change_password(req: ChangePasswordRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    if not verify_password(req.current_password, user.password_hash):
        raise ValidationError(
            "Current password is incorrect",
            details=[{"field": "current_password", "message": "Incorrect password"}],
        )
    if verify_password(req.new_password, user.password_hash):
        raise ValidationError(
            "The new password must be different from the current one",
            details=[{"field": "new_password", "message": "Must differ from the current password"}],
        )
    user.password_hash = get_password_hash(req.new_password)
    user.updated_at = datetime.now(timezone.utc)
    create_audit_log(db, "user", user.id, "CHANGE_PASSWORD", actor=user)
    db.commit()
    return {"message": "Password changed"}


def _send_reset_email(user: User, token: str) -> None:
    try:
        if settings.smtp_host and settings.mail_from and settings.public_base_url:
            link = f"{settings.public_base_url}/reset-password?token={token}"
            msg = EmailMessage()
            msg["Subject"] = f"Reset your {settings.app_name} password"
            msg["From"] = settings.mail_from
            msg["To"] = user.email
            msg.set_content(f"Click to reset your password: {link}")
            with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as s:
                if settings.smtp_tls:
                    s.starttls()
                if settings.smtp_username and settings.smtp_password:
                    s.login(settings.smtp_username, settings.smtp_password)
                s.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        structlog.get_logger().warning("password_reset_email_failed", error=str(e))


@router.post("/forgot-password")
def forgot_password(req: ForgotPasswordRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == req.email.lower()).first()
    if not user or not user.is_active:
        return {"message": FORGOT_PASSWORD_MESSAGE}
    token = secrets.token_urlsafe(32)
    db.add(PasswordReset(
        user_id=user.id,
        token=token,
        expires_at=datetime.now(timezone.utc) + timedelta(minutes=settings.password_reset_ttl_minutes),
    ))
    db.commit()
    _send_reset_email(user, token)
    return {"message": FORGOT_PASSWORD_MESSAGE}


@router.post("/reset-password")
def reset_password(req: ResetPasswordRequest, db: Session = Depends(get_db)):
    pr = db.query(PasswordReset).filter(PasswordReset.token == req.token).first()
    if not pr:
        raise ValidationError("Invalid or expired token")
    # Normalize datetimes to UTC-aware before comparison
    now_utc = datetime.now(timezone.utc)
    expires_at = pr.expires_at
    if expires_at and expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    if pr.used_at is not None or (expires_at and expires_at < now_utc):
        raise ValidationError("Invalid or expired token")
    user = db.query(User).filter(User.id == pr.user_id).first()
    if not user or not user.is_active:
        raise ValidationError("Invalid token")
    user.password_hash = get_password_hash(req.new_password)
    user.updated_at = now_utc
    pr.used_at = now_utc
    create_audit_log(db, "user", user.id, "RESET_PASSWORD", actor=user)
    db.commit()
    return {"message": "Password reset"}
