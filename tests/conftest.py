import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"

from datetime import datetime, timedelta
from itertools import count

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ajarin.assignment_service.models import Assignment
from ajarin.config import Settings
from ajarin.db import models
from ajarin.db.database import Base, create_tables, get_db
from ajarin.errors import StorageError
from ajarin.main import create_app
from ajarin.storage import FileStorage, get_storage
from ajarin.user_service.security import create_access_token

CLIENT_URL = "https://ajarin.test"


class MemoryStorage(FileStorage):
    """Keeps uploaded bytes in a dict instead of calling the storage service."""

    def __init__(self):
        super().__init__("http://storage.test")
        self.files = {}
        self.deleted = []
        self.fail = False
        self._ids = count(1)

    async def store(self, data, filename, content_type, folder):
        if self.fail:
            raise StorageError(f"Failed to upload file {filename}")
        file_id = f"{folder}/file-{next(self._ids)}"
        self.files[file_id] = data
        return {
            "id": file_id,
            "url": f"http://storage.test/{file_id}",
            "name": filename,
            "size": len(data),
            "mime_type": content_type,
        }

    async def delete(self, file_id):
        if self.fail:
            raise StorageError(f"Failed to delete file {file_id}")
        self.files.pop(file_id, None)
        self.deleted.append(file_id)


class Factory:
    def __init__(self, db: AsyncSession):
        self.db = db
        self._seq = count(1)

    async def _add(self, obj):
        self.db.add(obj)
        await self.db.commit()
        return obj

    async def user(self, name=None, role="student"):
        n = next(self._seq)
        return await self._add(models.User(
            name=name or f"User {n}",
            email=f"user{n}@example.com",
            password_hash="x",
            role=role,
            join_date=datetime.utcnow(),
        ))

    async def mentor(self, name=None):
        return await self.user(name=name or "Mentor", role="mentor")

    async def course(self, mentor, title="Python Basics", category=None):
        n = next(self._seq)
        return await self._add(models.Course(
            slug=f"course-{n}",
            title=title,
            category=category,
            mentor_id=mentor.id,
            is_published=True,
            created_at=datetime.utcnow(),
        ))

    async def enroll(self, user, course, status="active"):
        return await self._add(models.Enrollment(
            user_id=user.id, course_id=course.id, status=status, enrolled_at=datetime.utcnow()
        ))

    async def material(self, course, order, title=None):
        return await self._add(models.Material(
            course_id=course.id,
            mentor_id=course.mentor_id,
            title=title or f"Material {order}",
            type="video",
            content_url=f"https://video.test/{order}",
            chapter="General",
            order=order,
            created_at=datetime.utcnow(),
        ))

    async def assignment(self, course, max_attempts=1, is_published=True, publish_date=None, order_index=1):
        now = datetime.utcnow()
        return await self._add(Assignment(
            course_id=course.id,
            mentor_id=course.mentor_id,
            title="Write a function",
            description="Return the sum of two numbers",
            instructions="",
            max_points=100,
            max_attempts=max_attempts,
            order_index=order_index,
            is_published=is_published,
            publish_date=publish_date if publish_date is not None else (now - timedelta(days=1) if is_published else None),
            created_at=now,
            updated_at=now,
        ))


@pytest.fixture
def settings():
    return Settings(client_url=CLIENT_URL, secret_key="test-secret", cors_origins=["http://localhost"])


@pytest.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await create_tables(engine)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def factory(db):
    return Factory(db)


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
async def client(session_factory, storage, settings):
    app = create_app(settings)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: storage

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def auth(settings):
    def _headers(user):
        token = create_access_token({"user_id": user.id, "role": user.role}, settings)
        return {"Authorization": f"Bearer {token}"}
    return _headers
