"""
SQLAlchemy ORM models and engine construction for the record store.

Two tables back the service:

- ``users``: one row per account; ``email`` carries a unique index so that
  concurrent signups for the same address cannot both succeed.
- ``generations``: one row per successful generation, owned by a user.

The engine is created from the configured database URL.  The default is a
SQLite file accessed through the aiosqlite driver; any SQLAlchemy async
dialect works.
"""

import datetime
import uuid

import sqlalchemy
import sqlalchemy.event
import sqlalchemy.ext.asyncio
import sqlalchemy.orm


def _generate_identifier() -> str:
    return str(uuid.uuid4())


def _utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Base(sqlalchemy.orm.DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: sqlalchemy.orm.Mapped[str] = sqlalchemy.orm.mapped_column(
        sqlalchemy.String(36), primary_key=True, default=_generate_identifier
    )
    email: sqlalchemy.orm.Mapped[str] = sqlalchemy.orm.mapped_column(
        sqlalchemy.String(320), unique=True, index=True, nullable=False
    )
    password_hash: sqlalchemy.orm.Mapped[str] = sqlalchemy.orm.mapped_column(
        sqlalchemy.String(128), nullable=False
    )
    created_at: sqlalchemy.orm.Mapped[datetime.datetime] = sqlalchemy.orm.mapped_column(
        sqlalchemy.DateTime(timezone=True), default=_utc_now, nullable=False
    )

    generations: sqlalchemy.orm.Mapped[list["Generation"]] = sqlalchemy.orm.relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id})>"


class Generation(Base):
    __tablename__ = "generations"
    __table_args__ = (
        sqlalchemy.Index("ix_generations_user_id_created_at", "user_id", "created_at"),
    )

    id: sqlalchemy.orm.Mapped[str] = sqlalchemy.orm.mapped_column(
        sqlalchemy.String(36), primary_key=True, default=_generate_identifier
    )
    user_id: sqlalchemy.orm.Mapped[str] = sqlalchemy.orm.mapped_column(
        sqlalchemy.String(36),
        sqlalchemy.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    prompt: sqlalchemy.orm.Mapped[str] = sqlalchemy.orm.mapped_column(sqlalchemy.String(300), nullable=False)
    style: sqlalchemy.orm.Mapped[str] = sqlalchemy.orm.mapped_column(sqlalchemy.String(40), nullable=False)
    image_url: sqlalchemy.orm.Mapped[str] = sqlalchemy.orm.mapped_column(sqlalchemy.Text, nullable=False)
    # Only "succeeded" is written today; pending and failed states would
    # reuse this column.
    status: sqlalchemy.orm.Mapped[str] = sqlalchemy.orm.mapped_column(sqlalchemy.String(20), nullable=False)
    created_at: sqlalchemy.orm.Mapped[datetime.datetime] = sqlalchemy.orm.mapped_column(
        sqlalchemy.DateTime(timezone=True), default=_utc_now, nullable=False
    )

    user: sqlalchemy.orm.Mapped[User] = sqlalchemy.orm.relationship(back_populates="generations")

    def __repr__(self) -> str:
        return f"<Generation(id={self.id}, user_id={self.user_id})>"


def create_database_engine(database_url: str) -> sqlalchemy.ext.asyncio.AsyncEngine:
    """
    Create the async engine for the record store.

    SQLite connections are shared across the event loop's tasks, so the
    same-thread check is disabled for that dialect, and foreign keys are
    switched on for every new connection (SQLite leaves them off).
    """
    engine_keyword_arguments: dict = {}
    if database_url.startswith("sqlite"):
        engine_keyword_arguments["connect_args"] = {"check_same_thread": False}

    engine = sqlalchemy.ext.asyncio.create_async_engine(database_url, **engine_keyword_arguments)

    if engine.dialect.name == "sqlite":

        @sqlalchemy.event.listens_for(engine.sync_engine, "connect")
        def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine
