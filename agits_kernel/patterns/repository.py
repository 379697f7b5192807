"""
Pattern Repositories — persistence for detected patterns and relationships.

Two reference backends implement the PatternRepository contract:
- InMemoryPatternRepository: dict-backed, for tests and single-process use.
- SQLitePatternRepository: JSON documents in SQLite, accessed via aiosqlite.

Production deployments plug in their own document/graph store.
"""

import asyncio
from typing import Dict, List, Optional, Sequence

import aiosqlite

from agits_kernel.core.logging import get_logger
from agits_kernel.models.pattern import (
    DetectedPattern,
    PatternRelationship,
    PatternSignature,
)
from agits_kernel.patterns.signature import fingerprint_similarity

_logger = get_logger("patterns.repository")


class InMemoryPatternRepository:
    """
    In-memory pattern store.
    Relationships are kept in discovery order.
    """

    def __init__(self):
        self._patterns: Dict[str, DetectedPattern] = {}
        self._relationships: List[PatternRelationship] = []

    async def store_pattern(self, pattern: DetectedPattern) -> None:
        """Insert or replace a pattern."""
        self._patterns[pattern.id] = pattern

    async def update_pattern(self, pattern_id: str, pattern: DetectedPattern) -> None:
        self._patterns[pattern_id] = pattern

    async def get_pattern(self, pattern_id: str) -> Optional[DetectedPattern]:
        return self._patterns.get(pattern_id)

    async def delete_pattern(self, pattern_id: str) -> bool:
        """Remove a pattern. Returns False if it was not stored."""
        if pattern_id in self._patterns:
            del self._patterns[pattern_id]
            return True
        return False

    async def search_by_signature(
        self, signature: PatternSignature, threshold: float
    ) -> List[DetectedPattern]:
        """Patterns whose fingerprint similarity to the query reaches the threshold."""
        return [
            p for p in self._patterns.values()
            if fingerprint_similarity(p.signature.fingerprint, signature.fingerprint)
            >= threshold
        ]

    async def store_relationships(
        self, relationships: Sequence[PatternRelationship]
    ) -> None:
        self._relationships.extend(relationships)

    async def get_relationships(
        self, pattern_id: Optional[str] = None
    ) -> List[PatternRelationship]:
        """All relationships, or those touching one pattern."""
        if pattern_id is None:
            return list(self._relationships)
        return [
            r for r in self._relationships
            if pattern_id in (r.source_pattern_id, r.target_pattern_id)
        ]

    async def count(self) -> int:
        return len(self._patterns)


class SQLitePatternRepository:
    """
    SQLite-backed pattern store. Each row holds the full pattern as JSON plus
    the columns needed to query it without deserializing.

    All I/O goes through ``aiosqlite`` so it never blocks the event loop.
    The connection opens lazily on first use, or explicitly::

        async with SQLitePatternRepository(db_path) as repository:
            await repository.store_pattern(pattern)
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn: Optional[aiosqlite.Connection] = None
        self._open_lock = asyncio.Lock()

    async def open(self) -> None:
        """Open the connection and create the schema. Idempotent."""
        if self._conn is not None:
            return
        async with self._open_lock:
            # Another coroutine may have opened it while we waited
            if self._conn is not None:
                return
            conn = await aiosqlite.connect(self.db_path)
            try:
                conn.row_factory = aiosqlite.Row
                await self._create_tables(conn)
            except Exception:
                await conn.close()
                raise
            self._conn = conn
            _logger.debug("repository.opened", path=self.db_path)

    async def _db(self) -> aiosqlite.Connection:
        if self._conn is None:
            await self.open()
        return self._conn

    @staticmethod
    async def _create_tables(conn: aiosqlite.Connection) -> None:
        """Create the pattern and relationship tables if they don't exist."""
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS patterns (
                id TEXT PRIMARY KEY,
                pattern_type TEXT NOT NULL,
                fingerprint TEXT NOT NULL,
                confidence REAL NOT NULL,
                last_seen TEXT NOT NULL,
                pattern_json TEXT NOT NULL
            )
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS relationships (
                id TEXT PRIMARY KEY,
                source_pattern_id TEXT NOT NULL,
                target_pattern_id TEXT NOT NULL,
                relationship_type TEXT NOT NULL,
                relationship_json TEXT NOT NULL
            )
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_patterns_type ON patterns(pattern_type)
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_relationships_source
            ON relationships(source_pattern_id)
        """)
        await conn.commit()

    async def store_pattern(self, pattern: DetectedPattern) -> None:
        db = await self._db()
        await self._write_pattern(db, pattern)
        await db.commit()

    @staticmethod
    async def _write_pattern(db: aiosqlite.Connection, pattern: DetectedPattern) -> None:
        await db.execute(
            """
            INSERT OR REPLACE INTO patterns (
                id, pattern_type, fingerprint, confidence, last_seen, pattern_json
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                pattern.id,
                pattern.signature.type.value,
                pattern.signature.fingerprint,
                pattern.confidence,
                pattern.last_seen.isoformat(),
                pattern.model_dump_json(),
            ),
        )

    async def update_pattern(self, pattern_id: str, pattern: DetectedPattern) -> None:
        """Replace a pattern; a changed id moves the row in one commit."""
        db = await self._db()
        if pattern.id != pattern_id:
            await db.execute("DELETE FROM patterns WHERE id = ?", (pattern_id,))
        await self._write_pattern(db, pattern)
        await db.commit()

    @staticmethod
    def _deserialize(row: aiosqlite.Row) -> DetectedPattern:
        return DetectedPattern.model_validate_json(row["pattern_json"])

    async def get_pattern(self, pattern_id: str) -> Optional[DetectedPattern]:
        db = await self._db()
        cursor = await db.execute(
            "SELECT pattern_json FROM patterns WHERE id = ?", (pattern_id,)
        )
        row = await cursor.fetchone()
        return self._deserialize(row) if row else None

    async def delete_pattern(self, pattern_id: str) -> bool:
        db = await self._db()
        cursor = await db.execute("DELETE FROM patterns WHERE id = ?", (pattern_id,))
        await db.commit()
        return cursor.rowcount > 0

    async def search_by_signature(
        self, signature: PatternSignature, threshold: float
    ) -> List[DetectedPattern]:
        db = await self._db()
        cursor = await db.execute(
            "SELECT fingerprint, pattern_json FROM patterns ORDER BY rowid"
        )
        rows = await cursor.fetchall()
        return [
            self._deserialize(r) for r in rows
            if fingerprint_similarity(r["fingerprint"], signature.fingerprint) >= threshold
        ]

    async def store_relationships(
        self, relationships: Sequence[PatternRelationship]
    ) -> None:
        db = await self._db()
        await db.executemany(
            """
            INSERT OR REPLACE INTO relationships (
                id, source_pattern_id, target_pattern_id,
                relationship_type, relationship_json
            ) VALUES (?, ?, ?, ?, ?)
            """,
            [
                (
                    r.id,
                    r.source_pattern_id,
                    r.target_pattern_id,
                    r.relationship_type.value,
                    r.model_dump_json(),
                )
                for r in relationships
            ],
        )
        await db.commit()

    async def get_relationships(
        self, pattern_id: Optional[str] = None
    ) -> List[PatternRelationship]:
        """All relationships, or those where the pattern is source or target."""
        db = await self._db()
        if pattern_id is None:
            cursor = await db.execute(
                "SELECT relationship_json FROM relationships ORDER BY rowid"
            )
        else:
            cursor = await db.execute(
                "SELECT relationship_json FROM relationships "
                "WHERE source_pattern_id = ? OR target_pattern_id = ? ORDER BY rowid",
                (pattern_id, pattern_id),
            )
        rows = await cursor.fetchall()
        return [
            PatternRelationship.model_validate_json(r["relationship_json"])
            for r in rows
        ]

    async def count(self) -> int:
        """Total number of stored patterns."""
        db = await self._db()
        cursor = await db.execute("SELECT COUNT(*) as cnt FROM patterns")
        row = await cursor.fetchone()
        return row["cnt"]

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def __aenter__(self) -> "SQLitePatternRepository":
        await self.open()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()
