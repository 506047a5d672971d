from __future__ import annotations

from pathlib import Path

import aiosqlite

from phdsync.models import LedgerDownload, LedgerUpload


# Raised by a failed ledger write; callers log it and carry on.
LEDGER_ERRORS = (aiosqlite.Error, OSError)


DOWNLOAD_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS download_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    document_id TEXT NOT NULL,
    drive_id TEXT NOT NULL,
    path TEXT NOT NULL,
    document_type TEXT NOT NULL,
    revision INTEGER NOT NULL,
    operations INTEGER NOT NULL,
    checksum INTEGER NOT NULL,
    verified INTEGER NOT NULL,
    recorded_at INTEGER NOT NULL
);
"""

UPLOAD_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS upload_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    file TEXT NOT NULL,
    sha256 TEXT NOT NULL,
    drive_id TEXT NOT NULL,
    document_id TEXT NOT NULL,
    document_type TEXT NOT NULL,
    operations_pushed INTEGER NOT NULL,
    state_match INTEGER NOT NULL,
    recorded_at INTEGER NOT NULL
);
"""


async def ensure_db(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    async with aiosqlite.connect(db_path) as db:
        await db.execute(DOWNLOAD_SCHEMA_SQL)
        await db.execute(UPLOAD_SCHEMA_SQL)
        await db.commit()


async def record_download(db_path: Path, entry: LedgerDownload) -> None:
    await ensure_db(db_path)
    async with aiosqlite.connect(db_path) as db:
        await db.execute(
            """
            INSERT INTO download_log
                (document_id, drive_id, path, document_type, revision, operations, checksum, verified, recorded_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, strftime('%s','now'))
            """,
            (
                entry.document_id,
                entry.drive_id,
                entry.path,
                entry.document_type,
                entry.revision,
                entry.operations,
                entry.checksum,
                int(entry.verified),
            ),
        )
        await db.commit()


async def record_upload(db_path: Path, entry: LedgerUpload) -> None:
    await ensure_db(db_path)
    async with aiosqlite.connect(db_path) as db:
        await db.execute(
            """
            INSERT INTO upload_log
                (file, sha256, drive_id, document_id, document_type, operations_pushed, state_match, recorded_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, strftime('%s','now'))
            """,
            (
                entry.file,
                entry.sha256,
                entry.drive_id,
                entry.document_id,
                entry.document_type,
                entry.operations_pushed,
                int(entry.state_match),
            ),
        )
        await db.commit()


async def load_downloads(db_path: Path, limit: int = 20) -> list[LedgerDownload]:
    await ensure_db(db_path)
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            """
            SELECT document_id, drive_id, path, document_type, revision, operations, checksum, verified, recorded_at
            FROM download_log ORDER BY id DESC LIMIT ?
            """,
            (limit,),
        )
        rows = await cursor.fetchall()
        await cursor.close()

    return [
        LedgerDownload(
            document_id=str(row["document_id"]),
            drive_id=str(row["drive_id"]),
            path=str(row["path"]),
            document_type=str(row["document_type"]),
            revision=int(row["revision"]),
            operations=int(row["operations"]),
            checksum=int(row["checksum"]),
            verified=bool(row["verified"]),
            recorded_at=int(row["recorded_at"]),
        )
        for row in rows
    ]


async def load_uploads(db_path: Path, limit: int = 20) -> list[LedgerUpload]:
    await ensure_db(db_path)
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            """
            SELECT file, sha256, drive_id, document_id, document_type, operations_pushed, state_match, recorded_at
            FROM upload_log ORDER BY id DESC LIMIT ?
            """,
            (limit,),
        )
        rows = await cursor.fetchall()
        await cursor.close()

    return [
        LedgerUpload(
            file=str(row["file"]),
            sha256=str(row["sha256"]),
            drive_id=str(row["drive_id"]),
            document_id=str(row["document_id"]),
            document_type=str(row["document_type"]),
            operations_pushed=int(row["operations_pushed"]),
            state_match=bool(row["state_match"]),
            recorded_at=int(row["recorded_at"]),
        )
        for row in rows
    ]
