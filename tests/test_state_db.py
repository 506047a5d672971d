"""
Tests for the SQLite run ledger.
"""

import pytest

from phdsync.models import LedgerDownload, LedgerUpload
from phdsync.state_db import load_downloads, load_uploads, record_download, record_upload


def _download(document_id, *, verified=True):
    return LedgerDownload(
        document_id=document_id,
        drive_id="drive-1",
        path=f"/tmp/{document_id}.phd",
        document_type="powerhouse/demo-widget",
        revision=4,
        operations=4,
        checksum=0xDEADBEEF,
        verified=verified,
    )


class TestLedger:
    @pytest.mark.asyncio
    async def test_empty_ledger(self, tmp_path):
        db_path = tmp_path / "nested" / "state.db"

        assert await load_downloads(db_path) == []
        assert await load_uploads(db_path) == []
        assert db_path.exists()

    @pytest.mark.asyncio
    async def test_downloads_newest_first(self, tmp_path):
        db_path = tmp_path / "state.db"
        await record_download(db_path, _download("a"))
        await record_download(db_path, _download("b", verified=False))

        entries = await load_downloads(db_path)
        assert [entry.document_id for entry in entries] == ["b", "a"]
        assert entries[0].verified is False
        assert entries[1].checksum == 0xDEADBEEF
        assert entries[1].recorded_at > 0

    @pytest.mark.asyncio
    async def test_limit(self, tmp_path):
        db_path = tmp_path / "state.db"
        for index in range(5):
            await record_download(db_path, _download(f"doc-{index}"))

        assert len(await load_downloads(db_path, limit=2)) == 2

    @pytest.mark.asyncio
    async def test_uploads(self, tmp_path):
        db_path = tmp_path / "state.db"
        await record_upload(
            db_path,
            LedgerUpload(
                file="/tmp/a.phd",
                sha256="0" * 64,
                drive_id="drive-1",
                document_id="new-doc-1",
                document_type="powerhouse/demo-widget",
                operations_pushed=12,
                state_match=False,
            ),
        )

        [entry] = await load_uploads(db_path)
        assert entry.operations_pushed == 12
        assert entry.state_match is False
