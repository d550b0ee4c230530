from loop_backend.db import models  # noqa: F401
from loop_backend.db import session as db_session
from loop_backend.db.base import Base


def init_db() -> None:
    """Create every table on the bound engine without running migrations."""
    Base.metadata.create_all(bind=db_session.engine)


def drop_db() -> None:
    Base.metadata.drop_all(bind=db_session.engine)


def reset_db() -> None:
    drop_db()
    init_db()
