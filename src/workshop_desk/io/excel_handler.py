"""Excel (XLSX) job backup export and job import."""

from pathlib import Path
from typing import Optional

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Font

from workshop_desk.database.repository import Repository
from workshop_desk.io.csv_handler import (
    JOB_BACKUP_COLUMNS,
    JOB_IMPORT_COLUMNS,
    build_job_backup_rows,
    import_job_rows,
)
from workshop_desk.utils.formatters import format_hours

BACKUP_HEADERS = [
    "Job ID", "Customer", "Phone", "Equipment", "Description",
    "Status", "Assigned", "Created", "Est. Hours",
]


def export_job_backup_excel(repo: Repository, business_id: int,
                            filepath: str | Path,
                            days: Optional[int] = None) -> int:
    """Export the recent-jobs backup to an Excel workbook. Returns row count."""
    rows = build_job_backup_rows(repo, business_id, days)
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    wb = Workbook()
    ws = wb.active
    ws.title = "Jobs"
    ws.append(BACKUP_HEADERS)
    for cell in ws[1]:
        cell.font = Font(bold=True)

    for row in rows:
        ws.append([row[col] for col in JOB_BACKUP_COLUMNS])

    # Auto-fit column widths (approximate)
    for col in ws.columns:
        max_len = max(len(str(cell.value or "")) for cell in col)
        ws.column_dimensions[col[0].column_letter].width = min(max_len + 2, 40)

    summary = wb.create_sheet("Summary")
    business = repo.get_business(business_id)
    summary.append(["Business", business.name if business else ""])
    summary.append(["Total Jobs", len(rows)])
    summary.append(["Estimated Hours", format_hours(
        sum(r["estimated_hours"] or 0 for r in rows))])
    summary.append(["Generated", repo.clock().strftime("%Y-%m-%d %H:%M")])

    wb.save(filepath)
    return len(rows)


def import_jobs_excel(repo: Repository, business_id: int,
                      filepath: str | Path,
                      created_by: Optional[int] = None) -> dict:
    """Import jobs from the first sheet of a workbook.

    The header row must use the same column names as the CSV import.
    """
    wb = load_workbook(Path(filepath), read_only=True)
    try:
        ws = wb.active
        sheet_rows = ws.iter_rows(values_only=True)
        header = next(sheet_rows, None)
        if header is None:
            return {"imported": 0, "skipped": 0, "renumbered": [],
                    "errors": ["File error: workbook is empty"]}
        names = [str(h).strip() if h is not None else "" for h in header]
        missing = [c for c in ("description",) if c not in names]
        if missing:
            return {"imported": 0, "skipped": 0, "renumbered": [],
                    "errors": [f"File error: missing columns {missing}"]}

        def rows():
            for row_num, values in enumerate(sheet_rows, start=2):
                if all(v is None for v in values):
                    continue
                row = {}
                for name, value in zip(names, values):
                    if name in JOB_IMPORT_COLUMNS:
                        row[name] = "" if value is None else str(value)
                yield row_num, row

        return import_job_rows(repo, business_id, rows(), created_by)
    finally:
        wb.close()
