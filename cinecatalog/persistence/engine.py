from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from cinecatalog.config.settings import DatabaseSettings
from cinecatalog.persistence.tables import Base


class DatabaseManager:

    def __init__(self, config: DatabaseSettings, **engine_kwargs):

        engine_kwargs.setdefault("pool_pre_ping", True)
        if not config.url.startswith("sqlite"):
            engine_kwargs.setdefault("pool_size", 10)
            engine_kwargs.setdefault("pool_recycle", 3600)

        self.engine = create_engine(config.url, **engine_kwargs)
        self.session_factory = sessionmaker(bind=self.engine)

    def create_schema(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def get_session(self):

        session = self.session_factory()
        try:
            yield session
        except Exception as e:
            session.rollback()
            raise e
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()
