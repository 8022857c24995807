from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


# Builds the engine for a database URL; callers own its lifetime
def create_db_engine(database_url: Optional[str], **engine_kwargs) -> Engine:
    if not database_url:
        raise RuntimeError("DATABASE_URL must be set.")
    if database_url.startswith("postgresql"):
        engine_kwargs.setdefault("pool_pre_ping", True)
        engine_kwargs.setdefault("connect_args", {"connect_timeout": 5})
    return create_engine(database_url, **engine_kwargs)


# Session factory shared by the stores; objects stay readable after commit
def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
