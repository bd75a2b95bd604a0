from typing import Optional

import jwt
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from carelink.core.config import settings
from carelink.db.database import get_db
from carelink.models.user import Profile
from carelink.schemas.user import Profile as ProfileSchema
from carelink.services.jwt import decode_token
from carelink.services.profile_service import ProfileService

router = APIRouter()

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)


def _extract_user_id(token: str) -> str:
    try:
        payload = decode_token(token)
    except jwt.ExpiredSignatureError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        ) from exc
    sub = payload.get("sub")
    if not sub:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
    return str(sub)


def get_current_user(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> Profile:
    # Bearer header first, then the HTTP-only session cookie
    token = token or request.cookies.get(settings.ACCESS_TOKEN_COOKIE)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    user = ProfileService.get_profile(db, _extract_user_id(token))
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User inactive or missing")
    return user


@router.get("/token")
def get_socket_token(request: Request):
    """Hand the HTTP-only access cookie to the page so it can open a socket."""
    token = request.cookies.get(settings.ACCESS_TOKEN_COOKIE)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="No access token found")
    return {"token": token}


@router.get("/me", response_model=ProfileSchema)
def auth_me(current_user: Profile = Depends(get_current_user)):
    return current_user
