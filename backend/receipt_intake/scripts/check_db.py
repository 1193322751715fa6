"""Print a summary of the processing ledger.

Usage (from ``backend/``)::

    python -m receipt_intake.scripts.check_db
"""

import asyncio
from typing import Any, Dict

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from receipt_intake.core.database import dispose_engine, get_session_factory
from receipt_intake.models.enums import ProcessingStatus
from receipt_intake.models.tables import EmailProcessingLog


async def summarize(session_factory: async_sessionmaker[AsyncSession], latest: int = 5) -> Dict[str, Any]:
    async with session_factory() as session:
        rows = await session.execute(
            select(EmailProcessingLog.status, func.count(EmailProcessingLog.id)).group_by(EmailProcessingLog.status)
        )
        counts = {status.value: 0 for status in ProcessingStatus}
        for status, count in rows.all():
            counts[ProcessingStatus(status).value] = count

        result = await session.execute(
            select(
                EmailProcessingLog.fingerprint,
                EmailProcessingLog.status,
                EmailProcessingLog.error_message,
                EmailProcessingLog.created_at,
            )
            .order_by(EmailProcessingLog.created_at.desc(), EmailProcessingLog.id.desc())
            .limit(latest)
        )
        recent = [
            {
                "fingerprint": fp,
                "status": ProcessingStatus(status).value,
                "error_message": error,
                "created_at": created,
            }
            for fp, status, error, created in result.all()
        ]
    return {"total": sum(counts.values()), "counts": counts, "recent": recent}


async def check_db():
    try:
        summary = await summarize(get_session_factory())
    finally:
        await dispose_engine()

    print(f"Total ledger entries: {summary['total']}")
    for status, count in summary["counts"].items():
        print(f"  {status:<10} {count}")
    if summary["recent"]:
        print("\nLatest entries:")
        for row in summary["recent"]:
            line = f"{row['fingerprint'][:12]}  {row['status']:<10} {row['created_at']}"
            if row["error_message"]:
                line += f"  error={row['error_message']}"
            print(line)
    else:
        print("No ledger entries found")

if __name__ == "__main__":
    asyncio.run(check_db())
