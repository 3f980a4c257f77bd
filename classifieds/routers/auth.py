import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import create_access_token, get_current_user, get_password_hash, verify_password
from ..database import get_db
from ..errors import Conflict, Unauthenticated, ValidationFailed
from ..models import User, utcnow
from ..queries import user_counts
from ..schemas import (
    LoginRequest,
    PasswordChange,
    ProfileUpdate,
    RegisterRequest,
    UserAccount,
    UserAdmin,
    UserCounts,
    ok,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(body: RegisterRequest, db: AsyncSession = Depends(get_db)):
    email = body.email.lower()
    result = await db.execute(select(User).where(User.email == email))
    if result.scalar_one_or_none():
        raise Conflict("User already exists with this email")

    user = User(
        name=body.name,
        email=email,
        password=get_password_hash(body.password),
        phone=body.phone or None,
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise Conflict("User already exists with this email")
    await db.refresh(user)

    logger.info("Registered user %s", user.id)
    return ok(
        {"user": UserAccount.model_validate(user), "token": create_access_token(user.id)},
        "User registered successfully",
    )


@router.post("/login")
async def login(body: LoginRequest, db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(User).where(User.email == body.email.lower()))
    user = result.scalar_one_or_none()

    if not user:
        raise Unauthenticated("Invalid email or password")
    if not user.is_active:
        raise Unauthenticated("Your account has been deactivated")
    if not verify_password(body.password, user.password):
        raise Unauthenticated("Invalid email or password")

    user.last_login = utcnow()
    await db.commit()
    await db.refresh(user)

    logger.info("User %s logged in", user.id)
    return ok(
        {"user": UserAccount.model_validate(user), "token": create_access_token(user.id)},
        "Login successful",
    )


@router.get("/me")
async def get_me(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(User, *user_counts()).where(User.id == current_user.id))
    user, ads, sent, received = result.one()
    account = UserAccount.model_validate(user)
    profile = UserAdmin(
        **account.model_dump(),
        counts=UserCounts(ads=ads, sent_messages=sent, received_messages=received),
    )
    return ok({"user": profile})


@router.put("/profile")
async def update_profile(
    body: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if body.name:
        current_user.name = body.name
    if body.phone:
        current_user.phone = body.phone
    await db.commit()
    await db.refresh(current_user)
    return ok({"user": UserAccount.model_validate(current_user)}, "Profile updated successfully")


@router.put("/change-password")
async def change_password(
    body: PasswordChange,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if not verify_password(body.current_password, current_user.password):
        raise ValidationFailed("Current password is incorrect")

    current_user.password = get_password_hash(body.new_password)
    await db.commit()
    return ok(message="Password changed successfully")


@router.post("/logout")
async def logout(current_user: User = Depends(get_current_user)):
    # Tokens are stateless; the client discards its copy.
    return ok(message="Logout successful")
