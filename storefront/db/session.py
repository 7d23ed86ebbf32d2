from contextlib import contextmanager
import os
from pathlib import Path
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///data/app.db")


def _ensure_sqlite_dir(database_url: str) -> None:
    # Ensure sqlite file parent directory exists to avoid 'unable to open database file'
    if not database_url.startswith("sqlite:///") or ":memory:" in database_url:
        return
    db_path = database_url.split("sqlite:///")[-1]
    Path(db_path).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)


def make_session_factory(database_url: str, **engine_kwargs):
    """Build a ``get_session``-style context manager bound to its own engine."""
    _ensure_sqlite_dir(database_url)
    engine = create_engine(database_url, future=True, **engine_kwargs)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)

    @contextmanager
    def session_scope():
        session = factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    session_scope.engine = engine
    return session_scope


get_session = make_session_factory(DATABASE_URL)
engine = get_session.engine


@contextmanager
def use_session(session_factory, session=None):
    """Join ``session`` when the caller already holds a transaction, else open one."""
    if session is not None:
        yield session
        return
    with session_factory() as own:
        yield own
