from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from officers_log.config import get_settings

settings = get_settings()

# One engine per process; SqlDocumentStore opens a session per operation
engine = create_async_engine(settings.database_url, echo=False)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False
)
