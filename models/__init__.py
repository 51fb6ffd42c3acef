from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event

db = SQLAlchemy()


def enable_sqlite_savepoints(engine):
    """
    Let SQLite run SAVEPOINTs inside the session's transaction.

    pysqlite defers BEGIN until the first write, so a SAVEPOINT issued before
    that would open (and its RELEASE would commit) a transaction of its own.
    Emitting BEGIN ourselves keeps nested blocks inside the outer unit of work.
    """
    if engine.dialect.name != 'sqlite':
        return

    @event.listens_for(engine, 'connect')
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, 'begin')
    def _emit_begin(conn):
        conn.exec_driver_sql('BEGIN')
