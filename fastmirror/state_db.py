from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

import aiosqlite

from fastmirror.models import CopyJob, CopyReport, DuplicateOption, FileEntry


RUNS_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS copy_runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    finished_at INTEGER NOT NULL,
    server TEXT NOT NULL,
    src_root TEXT NOT NULL,
    dst_root TEXT NOT NULL,
    duplicate_option TEXT NOT NULL,
    job_count INTEGER NOT NULL,
    failure_count INTEGER NOT NULL
);
"""

FAILED_JOBS_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS failed_jobs (
    run_id INTEGER NOT NULL REFERENCES copy_runs(id) ON DELETE CASCADE,
    src_dir TEXT NOT NULL,
    dst_dir TEXT NOT NULL,
    names TEXT NOT NULL
);
"""


@dataclass(slots=True)
class CopyRunRecord:
    run_id: int
    finished_at: int
    server: str
    src_root: str
    dst_root: str
    duplicate_option: DuplicateOption
    job_count: int
    failure_count: int


async def ensure_db(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    async with aiosqlite.connect(db_path) as db:
        await db.execute(RUNS_SCHEMA_SQL)
        await db.execute(FAILED_JOBS_SCHEMA_SQL)
        await db.commit()


async def record_run(
    db_path: Path,
    *,
    server: str,
    src_root: str,
    dst_root: str,
    duplicate_option: DuplicateOption,
    report: CopyReport,
) -> int:
    await ensure_db(db_path)
    async with aiosqlite.connect(db_path) as db:
        cursor = await db.execute(
            """
            INSERT INTO copy_runs
                (finished_at, server, src_root, dst_root, duplicate_option, job_count, failure_count)
            VALUES (strftime('%s','now'), ?, ?, ?, ?, ?, ?)
            """,
            (
                server,
                src_root,
                dst_root,
                duplicate_option.value,
                report.job_count,
                report.failure_count,
            ),
        )
        run_id = int(cursor.lastrowid)
        await cursor.close()
        if report.failed_jobs:
            await db.executemany(
                """
                INSERT INTO failed_jobs (run_id, src_dir, dst_dir, names)
                VALUES (?, ?, ?, ?)
                """,
                [
                    (run_id, job.src_dir, job.dst_dir, json.dumps(job.names))
                    for job in report.failed_jobs
                ],
            )
        await db.commit()
    return run_id


async def load_last_run(db_path: Path) -> tuple[CopyRunRecord, list[CopyJob]] | None:
    await ensure_db(db_path)
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            """
            SELECT id, finished_at, server, src_root, dst_root, duplicate_option,
                   job_count, failure_count
            FROM copy_runs ORDER BY id DESC LIMIT 1
            """
        )
        row = await cursor.fetchone()
        await cursor.close()
        if row is None:
            return None

        cursor = await db.execute(
            "SELECT src_dir, dst_dir, names FROM failed_jobs WHERE run_id = ? ORDER BY rowid",
            (row["id"],),
        )
        job_rows = await cursor.fetchall()
        await cursor.close()

    record = CopyRunRecord(
        run_id=int(row["id"]),
        finished_at=int(row["finished_at"]),
        server=str(row["server"]),
        src_root=str(row["src_root"]),
        dst_root=str(row["dst_root"]),
        duplicate_option=DuplicateOption(str(row["duplicate_option"])),
        job_count=int(row["job_count"]),
        failure_count=int(row["failure_count"]),
    )
    jobs = [
        CopyJob(
            src_dir=str(job_row["src_dir"]),
            dst_dir=str(job_row["dst_dir"]),
            files=tuple(FileEntry(name=name) for name in json.loads(job_row["names"])),
        )
        for job_row in job_rows
    ]
    return record, jobs
