"""
Sequence Allocator

Appends rows to sequenced ledger families ("PR-Success-1", "PR-Success-2", ...).

Allocation (scan, take max suffix, +1) and insertion are not atomic, so two
writers can pick the same number. The unique constraint serializes them: the
loser re-scans and retries. A plain increment after a collision keeps losing
to the same contenders, so every retry re-reads the family and never goes
below one past the number that just collided.
"""

import asyncio
import logging
from typing import Optional

from app.config import get_settings
from app.errors import DuplicateLedgerRow, PersistenceRaceFailure
from app.models.build_state import BuildStateRecord
from app.services.state_ledger import StateLedger, family_sequence

logger = logging.getLogger(__name__)


class SequenceAllocator:
    """Race-tolerant writer for append-only ledger families."""

    def __init__(self, ledger: StateLedger, max_attempts: Optional[int] = None, backoff_seconds: Optional[float] = None):
        """
        Initialize allocator.

        Args:
            ledger: State ledger to scan and insert into
            max_attempts: Insert attempts before giving up (default from settings)
            backoff_seconds: Base delay between attempts, scaled by attempt number
        """
        settings = get_settings()
        self.ledger = ledger
        self.max_attempts = max_attempts or settings.LEDGER_SEQUENCE_MAX_ATTEMPTS
        self.backoff_seconds = settings.LEDGER_SEQUENCE_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds

    async def next_sequence(self, project_id: str, base: str, branch: str, webhook: bool) -> int:
        """
        Next free suffix for the family.

        Rows without a numeric suffix count as sequence 0.
        """
        sources = await self.ledger.scan_family(project_id, base, branch, webhook)
        sequences = [family_sequence(source, base) for source in sources]
        return max((s for s in sequences if s is not None), default=0) + 1

    async def append(self, record: BuildStateRecord, base: str) -> BuildStateRecord:
        """
        Insert record as the next member of the base family.

        Args:
            record: Row to insert (its source is replaced with "{base}-{n}")
            base: Family base source literal

        Returns:
            The inserted record

        Raises:
            PersistenceRaceFailure: If every attempt collided
        """
        collided: Optional[int] = None

        for attempt in range(1, self.max_attempts + 1):
            candidate = await self.next_sequence(record.project_id, base, record.branch, record.webhook)
            if collided is not None and candidate <= collided:
                candidate = collided + 1

            source = f"{base}-{candidate}"
            try:
                inserted = await self.ledger.insert(record.model_copy(update={"source": source}))
                if attempt > 1:
                    logger.info(f"Allocated {source} for {record.project_id} after {attempt} attempts")
                return inserted

            except DuplicateLedgerRow:
                collided = candidate
                logger.warning(
                    f"Sequence collision on {source} for {record.project_id} "
                    f"branch '{record.branch}' (attempt {attempt}/{self.max_attempts})"
                )
                if attempt < self.max_attempts and self.backoff_seconds:
                    await asyncio.sleep(self.backoff_seconds * attempt)

        raise PersistenceRaceFailure(
            f"Could not allocate a '{base}' sequence after {self.max_attempts} attempts",
            metadata={"project_id": record.project_id, "branch": record.branch, "base": base}
        )

    async def try_append(self, record: BuildStateRecord, base: str) -> Optional[BuildStateRecord]:
        """
        Append, but drop the row on exhaustion.

        The row audits a side effect that has already happened (a posted
        review comment), so losing the audit row must not fail the caller.
        """
        try:
            return await self.append(record, base)
        except PersistenceRaceFailure as e:
            logger.error(f"Dropping ledger row: {e} ({e.metadata})")
            return None
