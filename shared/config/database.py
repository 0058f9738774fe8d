from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from shared.config.settings import DATABASE_URL, DB_ECHO, DB_ISOLATION_LEVEL

# Every mutating operation runs in its own transaction; SERIALIZABLE in production
engine = create_async_engine(
    DATABASE_URL,
    echo=DB_ECHO,
    isolation_level=DB_ISOLATION_LEVEL,
    pool_pre_ping=True,
)

AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False)

Base = declarative_base()


async def get_db():
    async with AsyncSessionLocal() as session:
        yield session
