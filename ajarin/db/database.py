from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from ajarin.config import Settings

engine = create_async_engine(Settings().database_url, echo=False, future=True)

AsyncSessionLocal = sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()


# One session per request
async def get_db():
    async with AsyncSessionLocal() as session:
        yield session


async def create_tables(bind=None):
    # Import every model module so all tables are registered on Base.metadata
    from ajarin.db import models  # noqa: F401
    from ajarin.progress_service import models as progress_models  # noqa: F401
    from ajarin.assignment_service import models as assignment_models  # noqa: F401
    from ajarin.certificate_service import models as certificate_models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
