from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from volunteer_automation.config import settings
from volunteer_automation.core.security import create_user_token, get_current_user, verify_password
from volunteer_automation.schemas.auth import LoginRequest, LoginResponse, UserOut

router = APIRouter()


@router.post("/login", response_model=LoginResponse)
async def login(payload: LoginRequest) -> LoginResponse:
    email = payload.email.strip().lower()
    if email != settings.admin_email.lower():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
        )

    if not verify_password(
        payload.password, settings.admin_password_hash.get_secret_value()
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
        )

    user = UserOut(
        id=settings.admin_user_id,
        email=settings.admin_email,
        name=settings.admin_name,
        role="founder",
    )
    token = create_user_token(user.id, user.email, user.name, user.role)
    return LoginResponse(access_token=token, user=user)


@router.post("/logout")
async def logout() -> dict:
    return {"success": True}


@router.get("/me", response_model=UserOut)
async def me(user: dict = Depends(get_current_user)) -> UserOut:
    return UserOut(**user)
