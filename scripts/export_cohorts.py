"""
Export a cohort retention matrix to CSV

Usage:
    python scripts/export_cohorts.py <output.csv> [anchor] [active_definition] [bucket] [windows]

Example:
    python scripts/export_cohorts.py retention.csv activation entries_only weekly 8
"""
import sys
import asyncio
from pathlib import Path

# Add parent directory to path to import app modules
sys.path.insert(0, str(Path(__file__).parent.parent))

import pandas as pd
from finbot_analytics.core.config import settings
from finbot_analytics.core.database import AsyncSessionLocal, async_engine
from finbot_analytics.schemas.cohort import CohortQueryParams
from finbot_analytics.services.analytics import CohortAnalyticsService


def report_to_frame(report, absolute: bool = False) -> pd.DataFrame:
    """One row per cohort, one column per window"""
    records = []
    for row in report.rows:
        values = row.absolute if absolute else row.windows
        records.append({"cohort": row.cohort_key, "cohort_size": row.cohort_size, **values})

    df = pd.DataFrame(records)
    if not df.empty:
        df = df.set_index("cohort")
    return df


async def compute(params: CohortQueryParams):
    async with AsyncSessionLocal() as session:
        report = await CohortAnalyticsService(session).get_cohort_retention(params)
    await async_engine.dispose()
    return report


def main():
    if len(sys.argv) < 2:
        print("Usage: python scripts/export_cohorts.py <output.csv> [anchor] [active_definition] [bucket] [windows]")
        sys.exit(1)

    output = Path(sys.argv[1])
    args = sys.argv[2:]
    params = CohortQueryParams(
        anchor=args[0] if len(args) > 0 else "activation",
        active_definition=args[1] if len(args) > 1 else "entries_or_miniapp",
        bucket=args[2] if len(args) > 2 else "weekly",
        windows=int(args[3]) if len(args) > 3 else 12,
        timezone=settings.default_timezone
    )

    report = asyncio.run(compute(params))
    if report.no_data:
        print("No cohorts found for the selected anchor.")
        sys.exit(0)

    df = report_to_frame(report)
    df.loc["average"] = {"cohort_size": report.total_user_count, **report.per_window_average}
    df.to_csv(output, float_format="%.4f")

    print(f"Exported {len(report.rows)} cohorts ({report.total_user_count} users) to {output}")
    print(f"Best cohort: {report.best_cohort_key}")


if __name__ == "__main__":
    main()
