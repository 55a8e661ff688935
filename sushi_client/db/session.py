from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sushi_client.core.config import settings

class Base(DeclarativeBase): pass

def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores FK constraints (and their ON DELETE CASCADE) unless asked per connection
    cursor = dbapi_connection.cursor()
    cursor.execute('PRAGMA foreign_keys=ON')
    cursor.close()

def make_engine(dsn: str | None = None) -> Engine:
    dsn = dsn or settings.LOCAL_DB_DSN
    connect_args = {}
    if dsn.startswith('sqlite'):
        # store calls run on worker threads
        connect_args['check_same_thread'] = False
    engine = create_engine(dsn, pool_pre_ping=True, connect_args=connect_args)
    if dsn.startswith('sqlite'):
        event.listen(engine, 'connect', _enable_sqlite_foreign_keys)
    return engine

def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

def init_schema(engine: Engine) -> None:
    from sushi_client.db import models
    Base.metadata.create_all(engine)
    with Session(engine) as db, db.begin():
        if db.get(models.PlaceholderSequence, 1) is None:
            db.add(models.PlaceholderSequence(id=1, last_id=0))
