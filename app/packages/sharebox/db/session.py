"""Database engine and session factory configuration."""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.packages.sharebox.core.config import get_settings

settings = get_settings()


def _engine_kwargs(url: str) -> dict:
    # SQLite 连接需要允许跨线程（FastAPI 同步路由运行在线程池中）
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


# ``echo`` mirrors SQL logs when enabled in settings for easier debugging.
engine = create_engine(
    settings.sql_database_url,
    echo=settings.database_echo,
    **_engine_kwargs(settings.sql_database_url),
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
