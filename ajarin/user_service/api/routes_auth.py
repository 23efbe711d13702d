from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from datetime import datetime
import logging

from ajarin.config import Settings
from ajarin.db import models
from ajarin.db.database import get_db
from .. import schemas, security
from ..security import Identity, get_current_identity, get_settings

router = APIRouter(tags=["Authentication"])

logger = logging.getLogger("user_service")


@router.post("/register", response_model=schemas.UserOut, status_code=201)
async def register(user_data: schemas.UserCreate, db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(models.User).filter(models.User.email == user_data.email))
    if result.scalars().first():
        raise HTTPException(status_code=400, detail="Email is already registered")

    new_user = models.User(
        name=user_data.name.strip(),
        email=user_data.email,
        password_hash=security.get_password_hash(user_data.password),
        role=user_data.role,
        join_date=datetime.utcnow(),
    )
    db.add(new_user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=400, detail="Email is already registered")
    await db.refresh(new_user)

    logger.info(f"Registered user {new_user.id} with role {new_user.role}")
    return new_user


@router.post("/login", response_model=schemas.Token)
async def login(
    form: schemas.UserLogin,
    response: Response,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    result = await db.execute(select(models.User).filter(models.User.email == form.email))
    user = result.scalars().first()

    if not user or not security.verify_password(form.password, user.password_hash):
        logger.warning(f"Failed login for {form.email}")
        raise HTTPException(status_code=401, detail="Invalid email or password")

    user.last_visit = datetime.utcnow()
    await db.commit()

    token = security.create_access_token({"user_id": user.id, "role": user.role}, settings)
    response.set_cookie(
        security.COOKIE_NAME,
        token,
        httponly=True,
        samesite="lax",
        max_age=settings.access_token_expire_minutes * 60,
    )
    return {"access_token": token, "token_type": "bearer"}


@router.post("/logout")
async def logout(response: Response):
    response.delete_cookie(security.COOKIE_NAME)
    return {"detail": "Logged out"}


@router.get("/users/me", response_model=schemas.UserOut)
async def read_current_user(
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(models.User).filter(models.User.id == identity.user_id))
    user = result.scalars().first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user
