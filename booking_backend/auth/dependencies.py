from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWTError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_backend.auth import jwt_handler
from booking_backend.database import get_db
from booking_backend.errors import database_unavailable
from booking_backend.models.company import Company

security = HTTPBearer(auto_error=False)


def _unauthorized(code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": code, "message": message},
    )


def _company_id_claim(payload: dict) -> int | None:
    try:
        company_id = int(payload.get("company_id"))
    except (TypeError, ValueError):
        return None
    return company_id if company_id > 0 else None


def get_widget_company_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> int:
    if credentials is None or not credentials.credentials:
        raise _unauthorized("missing_token", "Widget token is required.")

    try:
        payload = jwt_handler.decode_widget_token(credentials.credentials)
    except PyJWTError as exc:
        raise _unauthorized("invalid_token", "Widget token is invalid or expired.") from exc

    company_id = _company_id_claim(payload)
    if company_id is None:
        raise _unauthorized("invalid_token", "Widget token has no company.")
    return company_id


def get_admin_claims(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> dict:
    if credentials is None or not credentials.credentials:
        raise _unauthorized("missing_token", "Admin token is required.")

    try:
        payload = jwt_handler.decode_admin_token(credentials.credentials)
    except PyJWTError as exc:
        raise _unauthorized("invalid_token", "Admin token is invalid or expired.") from exc

    if payload.get("role") not in jwt_handler.ADMIN_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "forbidden", "message": "Admin role required."},
        )
    return payload


def require_company_admin(company_id: int, claims: dict) -> None:
    if claims.get("role") == jwt_handler.ROLE_PLATFORM_ADMIN:
        return
    if _company_id_claim(claims) != company_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "forbidden", "message": "Not allowed to manage this company."},
        )


def resolve_public_company(public_key: str, db: Session = Depends(get_db)) -> int:
    key = (public_key or "").strip()
    if not key:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "not_found", "message": "Booking page not found."},
        )

    try:
        company_id = db.query(Company.id).filter(Company.public_booking_key == key).scalar()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    if company_id is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "not_found", "message": "Booking page not found."},
        )
    return company_id
