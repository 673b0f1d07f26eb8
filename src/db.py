"""
Database Manager - PostgreSQL-backed object store.

Stores Mesh and VirtualService objects as manifests with an integer
resource version. Every write is conditional on the version the caller
read, so a concurrent edit makes the write fail with ConflictError
instead of silently overwriting it.
"""

import asyncpg
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Type

from errors import ConflictError, NotFoundError
from migrate import run_migrations
from models import format_timestamp

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Manages the PostgreSQL connection pool and schema."""

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        min_pool_size: int = 5,
        max_pool_size: int = 20,
    ):
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.pool: Optional[asyncpg.Pool] = None

    async def connect(self):
        """Establish connection pool to PostgreSQL."""
        self.pool = await asyncpg.create_pool(
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.user,
            password=self.password,
            min_size=self.min_pool_size,
            max_size=self.max_pool_size,
            command_timeout=60,  # Query timeout
        )
        logger.info(
            f"Connected to PostgreSQL (pool: {self.min_pool_size}-{self.max_pool_size})"
        )

    async def close(self):
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            logger.info("Closed PostgreSQL connection")

    def _ensure_connected(self) -> None:
        """Ensure the database connection pool is established."""
        if self.pool is None:
            raise RuntimeError(
                "Database not connected. Call connect() before performing operations."
            )

    async def initialize_schema(self) -> None:
        """Apply database migrations to bring schema up to date."""
        self._ensure_connected()
        await run_migrations(self.pool)
        logger.info("Database schema initialized")

    def store_for(self, model_cls: Type) -> "ObjectStore":
        """Return an object store for one kind sharing this pool."""
        return ObjectStore(self, model_cls)


def _load_json(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, str):
        return json.loads(value)
    return value


class ObjectStore:
    """
    Object store for a single kind.

    ``get`` raises NotFoundError; ``update`` and ``update_status`` raise
    ConflictError when the object's resource version is stale. An object
    that is marked deleted and has no finalizers left is removed.
    """

    def __init__(self, db: DatabaseManager, model_cls: Type):
        self.db = db
        self.model_cls = model_cls
        self.kind = model_cls.kind

    def _parse_row(self, row: asyncpg.Record):
        """
        Convert a resource_objects row into a model instance.

        JSONB columns may come back as strings (no codec registered) or as
        already-decoded values; both are accepted.
        """
        result = dict(row)
        metadata = {
            "name": result["name"],
            "namespace": result["namespace"],
            "finalizers": _load_json(result.get("finalizers"), []),
            "resourceVersion": result.get("resource_version"),
        }
        if result.get("deletion_timestamp") is not None:
            metadata["deletionTimestamp"] = format_timestamp(
                result["deletion_timestamp"]
            )
        return self.model_cls.from_dict(
            {
                "kind": self.kind,
                "metadata": metadata,
                "spec": _load_json(result.get("spec"), {}),
                "status": _load_json(result.get("status"), {}),
            }
        )

    async def get(self, namespace: str, name: str):
        """Get an object by namespace and name."""
        async with self.db.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM resource_objects
                WHERE kind = $1 AND namespace = $2 AND name = $3
                """,
                self.kind,
                namespace,
                name,
            )
            if not row:
                raise NotFoundError(self.kind, name, namespace)
            return self._parse_row(row)

    async def list(self, namespace: Optional[str] = None) -> List[Any]:
        """List objects of this kind, optionally in one namespace."""
        async with self.db.pool.acquire() as conn:
            query = "SELECT * FROM resource_objects WHERE kind = $1"
            params: List[Any] = [self.kind]
            if namespace:
                query += " AND namespace = $2"
                params.append(namespace)
            query += " ORDER BY namespace, name"

            rows = await conn.fetch(query, *params)
            return [self._parse_row(row) for row in rows]

    async def create(self, obj):
        """
        Create a new object.

        Raises:
            ConflictError: If an object with the same name already exists.
        """
        manifest = obj.to_dict()
        async with self.db.pool.acquire() as conn:
            try:
                row = await conn.fetchrow(
                    """
                    INSERT INTO resource_objects (
                        kind, namespace, name, spec, status, finalizers
                    )
                    VALUES ($1, $2, $3, $4, $5, $6)
                    RETURNING *
                    """,
                    self.kind,
                    obj.metadata.namespace,
                    obj.metadata.name,
                    json.dumps(manifest.get("spec", {})),
                    json.dumps(manifest.get("status", {})),
                    json.dumps(obj.metadata.finalizers),
                )
            except asyncpg.UniqueViolationError as e:
                raise ConflictError(
                    f"{self.kind} {obj.metadata.namespace}/{obj.metadata.name} "
                    f"already exists"
                ) from e

            logger.info(
                f"Created {self.kind} {obj.metadata.namespace}/{obj.metadata.name}"
            )
            return self._parse_row(row)

    async def update(self, obj):
        """
        Write spec and finalizers.

        Returns:
            The stored object with its new resource version, or None if the
            write released the last finalizer of a deleted object.
        """
        manifest = obj.to_dict()
        return await self._conditional_write(
            obj,
            {
                "spec": json.dumps(manifest.get("spec", {})),
                "finalizers": json.dumps(obj.metadata.finalizers),
            },
        )

    async def update_status(self, obj):
        """Write the status subresource only."""
        manifest = obj.to_dict()
        return await self._conditional_write(
            obj, {"status": json.dumps(manifest.get("status", {}))}
        )

    async def _conditional_write(self, obj, columns: Dict[str, str]):
        assignments = ", ".join(
            f"{column} = ${index}" for index, column in enumerate(columns, start=5)
        )
        namespace = obj.metadata.namespace
        name = obj.metadata.name
        async with self.db.pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    f"""
                    UPDATE resource_objects
                    SET {assignments},
                        resource_version = resource_version + 1,
                        updated_at = NOW()
                    WHERE kind = $1
                      AND namespace = $2
                      AND name = $3
                      AND ($4::bigint IS NULL OR resource_version = $4)
                    RETURNING *
                    """,
                    self.kind,
                    namespace,
                    name,
                    obj.metadata.resource_version,
                    *columns.values(),
                )
                if row is None:
                    exists = await conn.fetchval(
                        """
                        SELECT resource_version FROM resource_objects
                        WHERE kind = $1 AND namespace = $2 AND name = $3
                        """,
                        self.kind,
                        namespace,
                        name,
                    )
                    if exists is None:
                        raise NotFoundError(self.kind, name, namespace)
                    raise ConflictError(
                        f"{self.kind} {namespace}/{name} has been modified "
                        f"(resource version {obj.metadata.resource_version}, "
                        f"current {exists})"
                    )

                if await self._collect_garbage(conn, row):
                    return None
                return self._parse_row(row)

    async def _collect_garbage(self, conn: asyncpg.Connection, row) -> bool:
        """Remove a deleted object once its finalizers are all released."""
        if row["deletion_timestamp"] is None:
            return False
        if _load_json(row["finalizers"], []):
            return False
        await conn.execute("DELETE FROM resource_objects WHERE id = $1", row["id"])
        logger.info(f"Removed {self.kind} {row['namespace']}/{row['name']}")
        return True

    async def mark_deleted(
        self, namespace: str, name: str, when: Optional[datetime] = None
    ):
        """
        Request deletion of an object.

        Sets the deletion timestamp (keeping an earlier one). Objects without
        finalizers are removed immediately.

        Returns:
            The object as stored, or None if it was removed.
        """
        async with self.db.pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    """
                    UPDATE resource_objects
                    SET deletion_timestamp = COALESCE(
                            deletion_timestamp, COALESCE($4::timestamptz, NOW())
                        ),
                        resource_version = resource_version + 1,
                        updated_at = NOW()
                    WHERE kind = $1 AND namespace = $2 AND name = $3
                    RETURNING *
                    """,
                    self.kind,
                    namespace,
                    name,
                    when,
                )
                if row is None:
                    raise NotFoundError(self.kind, name, namespace)

                logger.info(f"Marked {self.kind} {namespace}/{name} for deletion")
                if await self._collect_garbage(conn, row):
                    return None
                return self._parse_row(row)

