import os
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker, declarative_base

Base = declarative_base()


def make_engine(database_url: str) -> Engine:
    """
    Создаёт engine. Для SQLite заранее создаёт каталог с файлом базы
    и разрешает использование соединения из потоков пула FastAPI.
    """
    url = make_url(database_url)
    connect_args = {}
    if url.get_backend_name() == "sqlite":
        connect_args["check_same_thread"] = False
        db_dir = os.path.dirname(url.database or "")
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir)
    return create_engine(database_url, echo=False, connect_args=connect_args)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
