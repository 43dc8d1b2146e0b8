"""TTL mutex stored in the relational store (job_locks table)."""

from __future__ import annotations

import logging
import time
import uuid
from typing import TYPE_CHECKING

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TTL_SECONDS = 5 * 60


class JobLock:
    """Named at-most-one lock with a time-to-live.

    acquire() never blocks: it returns a token when the lock was taken and
    None when another holder's lease is still live. Expired leases are purged
    on the next acquire, so a crashed holder blocks others for at most ttl.
    """

    def __init__(
        self,
        engine: Engine,
        name: str,
        *,
        ttl_seconds: float = DEFAULT_LOCK_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.engine = engine
        self.name = name
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def acquire(self) -> str | None:
        now = self._clock()
        token = uuid.uuid4().hex

        try:
            with self.engine.begin() as conn:
                conn.execute(
                    text(
                        "DELETE FROM job_locks "
                        "WHERE name = :name AND expires_at <= :now"
                    ),
                    {"name": self.name, "now": now},
                )
                conn.execute(
                    text("""
                        INSERT INTO job_locks (name, token, expires_at)
                        VALUES (:name, :token, :expires_at)
                    """),
                    {
                        "name": self.name,
                        "token": token,
                        "expires_at": now + self.ttl_seconds,
                    },
                )
        except IntegrityError:
            logger.info("Lock %s is held; skipping", self.name)
            return None

        return token

    def release(self, token: str) -> bool:
        """Release the lock if this token still owns it."""
        with self.engine.begin() as conn:
            result = conn.execute(
                text("DELETE FROM job_locks WHERE name = :name AND token = :token"),
                {"name": self.name, "token": token},
            )

        if result.rowcount == 0:
            logger.warning("Lock %s expired before release", self.name)
            return False
        return True

    def is_held(self) -> bool:
        with self.engine.connect() as conn:
            held = conn.execute(
                text(
                    "SELECT 1 FROM job_locks "
                    "WHERE name = :name AND expires_at > :now"
                ),
                {"name": self.name, "now": self._clock()},
            ).fetchone()
        return held is not None
