"""
Payroll Export Script

Exports the monthly payroll summary (approved hours, amounts, payment status)
to CSV or JSON for the accountant.
Usage: python -m app.scripts.payroll_export --month 2024-05 --output payroll-2024-05.csv
"""
import argparse
import asyncio
import csv
import gzip
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

from app.services.payroll_service import get_payroll_service

CSV_COLUMNS = [
    "staffId",
    "staffName",
    "month",
    "approvedHours",
    "hourlyWage",
    "approvedAmount",
    "paid",
    "paidAt",
    "amountPaid",
    "reference",
    "paidBy",
]


def write_month_summary(rows: List[Dict[str, Any]], month: str, output_file: str) -> int:
    """
    Write summary rows to output_file.

    The format follows the extension: .csv, .json or .json.gz.

    Returns:
        Number of rows written
    """
    path = Path(output_file)
    if path.suffix == ".csv":
        with open(path, "w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=CSV_COLUMNS, extrasaction="ignore")
            writer.writeheader()
            writer.writerows(rows)
        return len(rows)

    export_data = {
        "metadata": {
            "export_time": datetime.now(timezone.utc).isoformat(),
            "month": month,
            "total_rows": len(rows),
            "total_approved_amount": round(sum(row.get("approvedAmount") or 0 for row in rows), 2),
        },
        "rows": rows,
    }
    json_str = json.dumps(export_data, indent=2, ensure_ascii=False)
    if path.name.endswith(".gz"):
        with gzip.open(path, "wt", encoding="utf-8") as f:
            f.write(json_str)
    else:
        with open(path, "w", encoding="utf-8") as f:
            f.write(json_str)
    return len(rows)


async def export_month(month: str, output_file: str):
    print(f"Exporting payroll summary for {month} to {output_file}...")
    rows = await get_payroll_service().get_month_summary(month)
    written = write_month_summary(rows, month, output_file)

    file_size = Path(output_file).stat().st_size / 1024  # KB
    print(f"\n✓ Export complete: {written} staff rows, {file_size:.1f} KB")


def main():
    """CLI entry point"""
    parser = argparse.ArgumentParser(description="Export the monthly payroll summary")
    parser.add_argument("--month", "-m", required=True, help="Month to export (YYYY-MM)")
    parser.add_argument(
        "--output",
        "-o",
        default=None,
        help="Output file (.csv, .json or .json.gz; default: payroll-<month>.csv)"
    )

    args = parser.parse_args()
    output = args.output or f"payroll-{args.month[:7]}.csv"

    asyncio.run(export_month(args.month, output))


if __name__ == "__main__":
    main()
