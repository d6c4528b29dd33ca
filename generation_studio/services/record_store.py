"""
Record store for users and generations.

Wraps an async SQLAlchemy engine and exposes the handful of operations the
service needs: create, find-unique and find-many-ordered.  Each operation
runs in its own short-lived session and transaction, so the store holds no
per-request state and is safe for concurrent use from many tasks.

Uniqueness is enforced by the database itself (primary keys and the unique
index on ``users.email``).  A violation while creating a user is reported
as ``UserAlreadyExistsError`` rather than a generic failure, which keeps
signup correct even when two requests for the same email race.
"""

import sqlalchemy
import sqlalchemy.exc
import sqlalchemy.ext.asyncio
import structlog

import generation_studio.database
import generation_studio.exceptions

logger = structlog.get_logger()


class RecordStore:
    """
    Async persistence facade over the ``users`` and ``generations`` tables.

    Returned ORM objects are detached from their session
    (``expire_on_commit=False``) and only their column attributes are read
    by callers.

    ``count_generations`` has no caller in the service; it lets tests check
    that a rejected request left no row behind.
    """

    def __init__(self, engine: sqlalchemy.ext.asyncio.AsyncEngine) -> None:
        self._engine = engine
        self._session_factory = sqlalchemy.ext.asyncio.async_sessionmaker(
            engine,
            expire_on_commit=False,
        )

    @classmethod
    def from_database_url(cls, database_url: str) -> "RecordStore":
        return cls(generation_studio.database.create_database_engine(database_url))

    async def create_schema(self) -> None:
        """Create any missing tables.  Existing tables are left untouched."""
        async with self._engine.begin() as connection:
            await connection.run_sync(generation_studio.database.Base.metadata.create_all)

    # ── Users ──────────────────────────────────────────────────────────

    async def create_user(self, email: str, password_hash: str) -> generation_studio.database.User:
        """
        Insert a new user.

        Raises:
            UserAlreadyExistsError: When the email is already registered.
        """
        user = generation_studio.database.User(email=email, password_hash=password_hash)
        async with self._session_factory() as session:
            session.add(user)
            try:
                await session.commit()
            except sqlalchemy.exc.IntegrityError as integrity_error:
                await session.rollback()
                logger.info("user_creation_rejected_duplicate_email")
                raise generation_studio.exceptions.UserAlreadyExistsError() from integrity_error
        logger.info("user_created", user_id=user.id)
        return user

    async def find_user_by_email(self, email: str) -> generation_studio.database.User | None:
        async with self._session_factory() as session:
            result = await session.execute(
                sqlalchemy.select(generation_studio.database.User).where(
                    generation_studio.database.User.email == email,
                )
            )
            return result.scalar_one_or_none()

    async def find_user_by_identifier(self, user_identifier: str) -> generation_studio.database.User | None:
        async with self._session_factory() as session:
            return await session.get(generation_studio.database.User, user_identifier)

    # ── Generations ────────────────────────────────────────────────────

    async def create_generation(
        self,
        user_identifier: str,
        prompt: str,
        style: str,
        image_url: str,
        status: str,
    ) -> generation_studio.database.Generation:
        """Insert a generation row; its identifier and timestamp are assigned here."""
        generation = generation_studio.database.Generation(
            user_id=user_identifier,
            prompt=prompt,
            style=style,
            image_url=image_url,
            status=status,
        )
        async with self._session_factory() as session:
            session.add(generation)
            await session.commit()
        return generation

    async def list_recent_generations(
        self,
        user_identifier: str,
        limit: int,
    ) -> list[generation_studio.database.Generation]:
        """
        Return the user's most recent generations, newest first.

        Rows are filtered strictly by owner.  The identifier breaks ties
        between rows sharing a timestamp so the order is deterministic.
        """
        generation_table = generation_studio.database.Generation
        async with self._session_factory() as session:
            result = await session.execute(
                sqlalchemy.select(generation_table)
                .where(generation_table.user_id == user_identifier)
                .order_by(generation_table.created_at.desc(), generation_table.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def count_generations(self, user_identifier: str) -> int:
        generation_table = generation_studio.database.Generation
        async with self._session_factory() as session:
            result = await session.execute(
                sqlalchemy.select(sqlalchemy.func.count())
                .select_from(generation_table)
                .where(generation_table.user_id == user_identifier)
            )
            return int(result.scalar_one())

    # ── Lifecycle ──────────────────────────────────────────────────────

    async def check_health(self) -> bool:
        """Run a trivial query; any database error counts as unhealthy."""
        try:
            async with self._engine.connect() as connection:
                await connection.execute(sqlalchemy.text("SELECT 1"))
        except sqlalchemy.exc.SQLAlchemyError as database_error:
            logger.warning("record_store_health_check_failed", error=str(database_error))
            return False
        return True

    async def close(self) -> None:
        """Dispose of the engine's connection pool."""
        await self._engine.dispose()
