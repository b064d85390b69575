"""
Credit Ledger Service
SQLite-backed credit balances with reserve / commit / release accounting.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional

import aiosqlite

from ..config import get_settings
from ..models.credits import (
    ChargeDetails,
    CreditBalance,
    CreditTransaction,
    ReservationToken,
    VideoRecord,
)
from ..utils.exceptions import InsufficientCreditsError, ReservationError
from ..utils.logger import get_logger

logger = get_logger()


class CreditLedger:
    """
    Per-user credit balances.

    A reservation is an in-memory hold: it lowers the spendable balance
    seen by concurrent requests but writes nothing. Only ``commit`` touches
    the database, decrementing the balance and inserting the transaction
    (and optional video) row inside one ``BEGIN IMMEDIATE`` transaction.
    """

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialized = False
        self._init_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()
        self._holds: Dict[str, Dict[str, ReservationToken]] = {}

    async def initialize(self):
        """Initialize database schema."""
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return

            async with aiosqlite.connect(self.db_path) as conn:
                await conn.execute("PRAGMA journal_mode=WAL")
                await conn.execute("PRAGMA synchronous=NORMAL")
                await conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS credits (
                        user_id TEXT PRIMARY KEY,
                        total_credits INTEGER NOT NULL DEFAULT 0,
                        used_credits INTEGER NOT NULL DEFAULT 0,
                        remaining_credits INTEGER NOT NULL DEFAULT 0,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
                await conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS credit_transactions (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        user_id TEXT NOT NULL,
                        action_type TEXT NOT NULL,
                        credits_used INTEGER NOT NULL,
                        model_used TEXT,
                        duration REAL,
                        description TEXT NOT NULL DEFAULT '',
                        created_at TEXT NOT NULL
                    )
                    """
                )
                await conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS ai_videos (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        user_id TEXT NOT NULL,
                        prompt TEXT NOT NULL DEFAULT '',
                        enhanced_prompt TEXT,
                        video_url TEXT NOT NULL,
                        model TEXT NOT NULL,
                        mode TEXT NOT NULL,
                        duration REAL NOT NULL DEFAULT 0,
                        clip_count INTEGER NOT NULL DEFAULT 1,
                        transition TEXT,
                        credits_used INTEGER NOT NULL DEFAULT 0,
                        created_at TEXT NOT NULL
                    )
                    """
                )
                await conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_transactions_user ON credit_transactions(user_id)"
                )
                await conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_videos_user ON ai_videos(user_id)"
                )
                await conn.commit()

            self._initialized = True
            logger.info(f"Credit ledger initialized at {self.db_path}")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def held_credits(self, user_id: str) -> int:
        return sum(token.credits for token in self._holds.get(user_id, {}).values())

    async def get_balance(self, user_id: str) -> CreditBalance:
        await self.initialize()
        async with aiosqlite.connect(self.db_path) as conn:
            cursor = await conn.execute(
                "SELECT total_credits, used_credits, remaining_credits FROM credits WHERE user_id = ?",
                (user_id,),
            )
            row = await cursor.fetchone()
            await cursor.close()

        if row is None:
            return CreditBalance(user_id=user_id)
        total, used, remaining = row
        return CreditBalance(
            user_id=user_id,
            total_credits=total,
            used_credits=used,
            remaining_credits=remaining,
        )

    async def list_transactions(self, user_id: str, limit: int = 50) -> List[CreditTransaction]:
        await self.initialize()
        async with aiosqlite.connect(self.db_path) as conn:
            conn.row_factory = aiosqlite.Row
            cursor = await conn.execute(
                "SELECT * FROM credit_transactions WHERE user_id = ? ORDER BY id DESC LIMIT ?",
                (user_id, limit),
            )
            rows = await cursor.fetchall()
            await cursor.close()
        return [CreditTransaction(**dict(row)) for row in rows]

    async def list_videos(self, user_id: str, limit: int = 50) -> List[VideoRecord]:
        await self.initialize()
        async with aiosqlite.connect(self.db_path) as conn:
            conn.row_factory = aiosqlite.Row
            cursor = await conn.execute(
                "SELECT * FROM ai_videos WHERE user_id = ? ORDER BY id DESC LIMIT ?",
                (user_id, limit),
            )
            rows = await cursor.fetchall()
            await cursor.close()
        return [VideoRecord(**dict(row)) for row in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def add_credits(self, user_id: str, amount: int) -> CreditBalance:
        """Top up a balance, creating the row on first use."""
        await self.initialize()
        now = datetime.utcnow().isoformat()
        async with self._write_lock:
            async with aiosqlite.connect(self.db_path) as conn:
                await conn.execute(
                    """
                    INSERT INTO credits (user_id, total_credits, used_credits, remaining_credits, updated_at)
                    VALUES (?, ?, 0, ?, ?)
                    ON CONFLICT(user_id) DO UPDATE SET
                        total_credits = total_credits + excluded.total_credits,
                        remaining_credits = remaining_credits + excluded.remaining_credits,
                        updated_at = excluded.updated_at
                    """,
                    (user_id, amount, amount, now),
                )
                await conn.commit()
        logger.info(f"Added {amount} credits for user {user_id}")
        return await self.get_balance(user_id)

    async def reserve(self, user_id: str, credits: int) -> ReservationToken:
        """
        Hold ``credits`` against the user's spendable balance.

        Raises InsufficientCreditsError without changing anything when the
        balance minus existing holds does not cover the request.
        """
        async with self._write_lock:
            balance = await self.get_balance(user_id)
            available = balance.remaining_credits - self.held_credits(user_id)
            if available < credits:
                logger.info(f"Insufficient credits for {user_id}: need {credits}, have {available}")
                raise InsufficientCreditsError(required=credits, remaining=max(0, available))

            token = ReservationToken(user_id=user_id, credits=credits)
            self._holds.setdefault(user_id, {})[token.id] = token

        logger.debug(f"Reserved {credits} credits for {user_id} ({token.id})")
        return token

    def _pop_hold(self, token: ReservationToken):
        holds = self._holds.get(token.user_id, {})
        holds.pop(token.id, None)
        if not holds:
            self._holds.pop(token.user_id, None)

    async def commit(self, token: ReservationToken, details: ChargeDetails) -> int:
        """
        Persist the charge for ``token``; returns the remaining balance.

        The balance decrement, the transaction row and the optional video
        row are written in the same database transaction.
        """
        await self.initialize()
        async with self._write_lock:
            if token.settled or token.id not in self._holds.get(token.user_id, {}):
                raise ReservationError(token.id, "already settled or unknown")

            now = datetime.utcnow().isoformat()
            async with aiosqlite.connect(self.db_path, isolation_level=None) as conn:
                await conn.execute("BEGIN IMMEDIATE")
                try:
                    cursor = await conn.execute(
                        "SELECT remaining_credits FROM credits WHERE user_id = ?",
                        (token.user_id,),
                    )
                    row = await cursor.fetchone()
                    await cursor.close()
                    remaining = row[0] if row else 0
                    if remaining < token.credits:
                        raise InsufficientCreditsError(required=token.credits, remaining=remaining)

                    await conn.execute(
                        """
                        UPDATE credits SET
                            used_credits = used_credits + ?,
                            remaining_credits = remaining_credits - ?,
                            updated_at = ?
                        WHERE user_id = ?
                        """,
                        (token.credits, token.credits, now, token.user_id),
                    )
                    await conn.execute(
                        """
                        INSERT INTO credit_transactions
                            (user_id, action_type, credits_used, model_used, duration, description, created_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            token.user_id,
                            details.action_type,
                            token.credits,
                            details.model_used,
                            details.duration,
                            details.description,
                            now,
                        ),
                    )
                    if details.video is not None:
                        video = details.video
                        await conn.execute(
                            """
                            INSERT INTO ai_videos
                                (user_id, prompt, enhanced_prompt, video_url, model, mode,
                                 duration, clip_count, transition, credits_used, created_at)
                            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                            """,
                            (
                                token.user_id,
                                video.prompt,
                                video.enhanced_prompt,
                                video.video_url,
                                video.model,
                                video.mode,
                                video.duration,
                                video.clip_count,
                                video.transition,
                                token.credits,
                                now,
                            ),
                        )
                    await conn.execute("COMMIT")
                except BaseException:
                    await conn.execute("ROLLBACK")
                    raise

            token.committed = True
            self._pop_hold(token)

        logger.info(
            f"Charged {token.credits} credits to {token.user_id} "
            f"({details.action_type}), remaining {remaining - token.credits}"
        )
        return remaining - token.credits

    async def release(self, token: ReservationToken) -> bool:
        """Drop an uncommitted hold; no-op once settled."""
        async with self._write_lock:
            if token.settled:
                return False
            self._pop_hold(token)
            token.released = True
        logger.debug(f"Released reservation {token.id} ({token.credits} credits)")
        return True

    async def record_video(self, record: VideoRecord) -> int:
        """Store a history row for a video that carries no charge."""
        await self.initialize()
        async with self._write_lock:
            async with aiosqlite.connect(self.db_path) as conn:
                cursor = await conn.execute(
                    """
                    INSERT INTO ai_videos
                        (user_id, prompt, enhanced_prompt, video_url, model, mode,
                         duration, clip_count, transition, credits_used, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.user_id,
                        record.prompt,
                        record.enhanced_prompt,
                        record.video_url,
                        record.model,
                        record.mode,
                        record.duration,
                        record.clip_count,
                        record.transition,
                        record.credits_used,
                        record.created_at.isoformat(),
                    ),
                )
                await conn.commit()
                return cursor.lastrowid

    @asynccontextmanager
    async def gate(self, user_id: str, credits: int) -> AsyncIterator[ReservationToken]:
        """
        Reserve on entry, release on any exit that did not commit.

        Usage:
            async with ledger.gate(user_id, cost) as token:
                ...expensive work...
                await ledger.commit(token, details)
        """
        token = await self.reserve(user_id, credits)
        try:
            yield token
        finally:
            if not token.committed:
                await self.release(token)


_credit_ledger: Optional[CreditLedger] = None


def get_credit_ledger() -> CreditLedger:
    """Return singleton credit ledger."""
    global _credit_ledger
    if _credit_ledger is None:
        _credit_ledger = CreditLedger(get_settings().database_path)
    return _credit_ledger
