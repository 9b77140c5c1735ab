"""
State Ledger

Idempotent store of build state keyed by (project, source, webhook flag, branch).

Two kinds of streams:
- Non-sequenced (Railway, Github, Github-Merge, Branch-Naming, PR-Failed):
  exactly one row per key, overwritten in place via ON CONFLICT upsert.
- Sequenced (PR-Success, Mentor-Review): an append-only family of rows
  named "{base}-{n}", inserted once and never updated (see SequenceAllocator).

The only deletion is supersession: a PR-Success row removes the PR-Failed
rows for the same (project, branch).
"""

import asyncpg
import logging
import re
from typing import Any, Callable, Dict, List, Optional
from datetime import datetime, timedelta, timezone

from app.config import get_settings
from app.errors import DuplicateLedgerRow
from app.models.build_state import (
    BuildStateRecord,
    BuildStatus,
    NO_BRANCH,
    WRITABLE_COLUMNS,
    ERROR_COLUMNS,
)

logger = logging.getLogger(__name__)

_KEY_COLUMNS = ("project_id", "source", "webhook", "branch")


def family_sequence(source: str, base: str) -> Optional[int]:
    """
    Sequence number of source within the family of base.

    "PR-Success" -> 0, "PR-Success-3" -> 3, anything else -> None.
    """
    if source == base:
        return 0
    match = re.fullmatch(re.escape(base) + r"-(\d+)", source)
    if match:
        return int(match.group(1))
    return None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StateLedger:
    """
    Build-state ledger backed by PostgreSQL (asyncpg).

    Public methods normalise records (branch sentinel, bounded output,
    cleared error fields) and delegate to a small set of SQL primitives.
    """

    def __init__(self, db_pool: Optional[asyncpg.Pool], clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize ledger.

        Args:
            db_pool: Database connection pool
            clock: Time source for window lookups (defaults to UTC now)
        """
        self.db_pool = db_pool
        self.settings = get_settings()
        self.clock = clock or utcnow

    # --- Normalisation ---

    def _normalise(self, record: BuildStateRecord) -> BuildStateRecord:
        updates: Dict[str, Any] = {}

        limit = self.settings.LAST_OUTPUT_MAX_CHARS
        if record.last_output and len(record.last_output) > limit:
            updates["last_output"] = record.last_output[-limit:]

        if record.last_status == BuildStatus.SUCCESS:
            for column in ERROR_COLUMNS:
                updates[column] = None

        if record.timestamp is None:
            updates["timestamp"] = self.clock()

        return record.model_copy(update=updates) if updates else record

    @staticmethod
    def _values(record: BuildStateRecord) -> Dict[str, Any]:
        data = record.model_dump(include=set(WRITABLE_COLUMNS))
        for column, value in data.items():
            if hasattr(value, "value"):
                data[column] = value.value
        return data

    # --- Public API ---

    async def upsert(self, record: BuildStateRecord) -> BuildStateRecord:
        """
        Create or overwrite the single row for a non-sequenced key.

        Switching to SUCCESS explicitly clears all error fields.
        """
        record = self._normalise(record)
        await self._write_upsert(self._values(record))
        logger.info(
            f"Ledger upsert {record.project_id}/{record.source} "
            f"(webhook={record.webhook}, branch='{record.branch}') -> {record.last_status.value}"
        )
        return record

    async def insert(self, record: BuildStateRecord) -> BuildStateRecord:
        """
        Insert a new row.

        Raises:
            DuplicateLedgerRow: If the key already exists
        """
        record = self._normalise(record)
        await self._write_insert(self._values(record))
        return record

    async def scan_family(self, project_id: str, base: str, branch: str, webhook: bool) -> List[str]:
        """Return the source names of every row in the base family for a key."""
        rows = await self._fetch(project_id, branch=branch, webhook=webhook, family=base)
        return [row.source for row in rows]

    async def latest(
        self,
        project_id: str,
        source: str,
        branch: str = NO_BRANCH,
        webhook: Optional[bool] = None
    ) -> Optional[BuildStateRecord]:
        """Most recently updated row for an exact source literal."""
        rows = await self._fetch(project_id, branch=branch, webhook=webhook, source=source, limit=1)
        return rows[0] if rows else None

    async def recent_in_family(
        self,
        project_id: str,
        branch: str,
        base: str,
        within_seconds: int
    ) -> Optional[BuildStateRecord]:
        """Newest row of a family for (project, branch) created within the window."""
        since = self.clock() - timedelta(seconds=within_seconds)
        rows = await self._fetch(project_id, branch=branch, family=base, created_after=since, limit=1)
        return rows[0] if rows else None

    async def delete_family(self, project_id: str, branch: str, base: str) -> int:
        """Delete every row of a family for (project, branch), either webhook flag."""
        deleted = await self._delete(project_id, branch, base)
        if deleted:
            logger.info(f"Ledger removed {deleted} '{base}' row(s) for {project_id} branch '{branch}'")
        return deleted

    async def list_states(
        self,
        project_id: str,
        branch: Optional[str] = None,
        source: Optional[str] = None
    ) -> List[BuildStateRecord]:
        """All rows for a project, newest first, optionally filtered."""
        return await self._fetch(project_id, branch=branch, family=source)

    async def mark_stale_in_progress(self, older_than_minutes: int) -> int:
        """
        Flip rows stuck IN_PROGRESS to UNKNOWN.

        Returns:
            Number of rows updated
        """
        cutoff = self.clock() - timedelta(minutes=older_than_minutes)
        message = f"No terminal event received within {older_than_minutes} minutes"
        return await self._mark_stale(cutoff, message)

    # --- SQL primitives ---

    async def _write_upsert(self, values: Dict[str, Any]) -> None:
        columns = list(values.keys())
        placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
        updates = ", ".join(
            f"{col} = EXCLUDED.{col}" for col in columns if col not in _KEY_COLUMNS
        )

        async with self.db_pool.acquire() as conn:
            await conn.execute(f"""
                INSERT INTO build_states ({", ".join(columns)})
                VALUES ({placeholders})
                ON CONFLICT ON CONSTRAINT uq_build_states_key
                DO UPDATE SET {updates}, updated_at = NOW()
            """, *values.values())

    async def _write_insert(self, values: Dict[str, Any]) -> None:
        columns = list(values.keys())
        placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))

        try:
            async with self.db_pool.acquire() as conn:
                await conn.execute(f"""
                    INSERT INTO build_states ({", ".join(columns)})
                    VALUES ({placeholders})
                """, *values.values())
        except asyncpg.exceptions.UniqueViolationError as e:
            raise DuplicateLedgerRow(
                f"Ledger row already exists: {values['project_id']}/{values['source']}",
                metadata={"project_id": values["project_id"], "source": values["source"], "branch": values["branch"]}
            ) from e

    async def _fetch(
        self,
        project_id: str,
        branch: Optional[str] = None,
        webhook: Optional[bool] = None,
        source: Optional[str] = None,
        family: Optional[str] = None,
        created_after: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[BuildStateRecord]:
        conditions = ["project_id = $1"]
        args: List[Any] = [project_id]

        if branch is not None:
            args.append(branch)
            conditions.append(f"branch = ${len(args)}")
        if webhook is not None:
            args.append(webhook)
            conditions.append(f"webhook = ${len(args)}")
        if source is not None:
            args.append(source)
            conditions.append(f"source = ${len(args)}")
        if family is not None:
            args.append(family)
            n = len(args)
            conditions.append(f"(source = ${n} OR source ~ ('^' || ${n} || '-[0-9]+$'))")
        if created_after is not None:
            args.append(created_after)
            conditions.append(f"created_at >= ${len(args)}")

        query = f"""
            SELECT * FROM build_states
            WHERE {" AND ".join(conditions)}
            ORDER BY updated_at DESC, id DESC
        """
        if limit is not None:
            args.append(limit)
            query += f" LIMIT ${len(args)}"

        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(query, *args)

        return [BuildStateRecord(**dict(row)) for row in rows]

    async def _delete(self, project_id: str, branch: str, base: str) -> int:
        async with self.db_pool.acquire() as conn:
            result = await conn.execute("""
                DELETE FROM build_states
                WHERE project_id = $1
                  AND branch = $2
                  AND (source = $3 OR source ~ ('^' || $3 || '-[0-9]+$'))
            """, project_id, branch, base)

        # asyncpg returns the command tag, e.g. "DELETE 2"
        return int(result.split()[-1]) if result else 0

    async def _mark_stale(self, cutoff: datetime, message: str) -> int:
        async with self.db_pool.acquire() as conn:
            result = await conn.execute("""
                UPDATE build_states
                SET last_status = 'UNKNOWN', error_message = $2, updated_at = NOW()
                WHERE last_status = 'IN_PROGRESS'
                  AND updated_at < $1
            """, cutoff, message)

        return int(result.split()[-1]) if result else 0
