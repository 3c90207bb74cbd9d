"""CSV job backup export and job import."""

import csv
import logging
from datetime import timedelta
from pathlib import Path
from typing import Iterable, Optional

from workshop_desk.config import Config
from workshop_desk.database.counters import IdentifierAllocationError
from workshop_desk.database.models import Job
from workshop_desk.database.repository import Repository
from workshop_desk.io.validators import validate_job_row
from workshop_desk.utils.clock import from_db_timestamp
from workshop_desk.utils.formatters import format_status

logger = logging.getLogger(__name__)

JOB_BACKUP_COLUMNS = [
    "job_number", "customer", "phone", "equipment", "description",
    "status", "assigned_to", "created_at", "estimated_hours",
]

JOB_IMPORT_COLUMNS = [
    "job_number", "description", "customer_email", "equipment_description",
    "status", "estimated_hours",
]


def build_job_backup_rows(repo: Repository, business_id: int,
                          days: Optional[int] = None) -> list[dict]:
    """Rows for the jobs a business created in the last ``days`` days."""
    days = Config.JOB_BACKUP_DAYS if days is None else days
    since = repo.clock() - timedelta(days=days)
    users = {u.id: u.full_name for u in repo.get_users(business_id)}
    customers = {c.id: c for c in repo.get_customers(business_id)}

    rows = []
    for job in repo.get_jobs_created_since(business_id, since):
        customer = customers.get(job.customer_id)
        rows.append({
            "job_number": job.job_number,
            "customer": customer.name if customer else "Unknown Customer",
            "phone": (customer.phone or "") if customer else "",
            "equipment": job.equipment_description or "No equipment specified",
            "description": job.description,
            "status": format_status(job.status),
            "assigned_to": users.get(job.assigned_to, "Unassigned"),
            "created_at": from_db_timestamp(job.created_at).strftime(
                "%Y-%m-%d %H:%M"),
            "estimated_hours": (job.estimated_hours
                                if job.estimated_hours is not None else ""),
        })
    return rows


def export_job_backup_csv(repo: Repository, business_id: int,
                          filepath: str | Path,
                          days: Optional[int] = None) -> int:
    """Export the recent-jobs backup to CSV. Returns the number of rows."""
    rows = build_job_backup_rows(repo, business_id, days)
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    with open(filepath, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=JOB_BACKUP_COLUMNS)
        writer.writeheader()
        writer.writerows(rows)
    return len(rows)


def import_job_rows(repo: Repository, business_id: int,
                    rows: Iterable[tuple[int, dict]],
                    created_by: Optional[int] = None) -> dict:
    """Create jobs from (row number, row dict) pairs.

    A supplied job number is kept when it is free and belongs to this
    business; otherwise the job gets a generated number and the pair is
    listed under ``renumbered``.
    """
    results = {"imported": 0, "skipped": 0, "renumbered": [], "errors": []}

    for row_num, row in rows:
        errors = validate_job_row(row, row_num)
        if errors:
            results["errors"].extend(errors)
            results["skipped"] += 1
            continue

        supplied = (row.get("job_number") or "").strip()
        email = (row.get("customer_email") or "").strip()
        customer = repo.get_customer_by_email(email, business_id) \
            if email else None
        hours = row.get("estimated_hours")

        job = Job(
            business_id=business_id,
            job_number=supplied,
            customer_id=customer.id if customer else None,
            equipment_description=(
                row.get("equipment_description") or "").strip(),
            status=(row.get("status") or "").strip() or None,
            description=row["description"].strip(),
            estimated_hours=float(hours) if hours not in (None, "") else None,
        )
        try:
            created = repo.create_job(job, created_by=created_by)
        except (ValueError, IdentifierAllocationError) as e:
            results["errors"].append(f"Row {row_num}: {e}")
            results["skipped"] += 1
            continue

        results["imported"] += 1
        if supplied and created.job_number != supplied:
            results["renumbered"].append((supplied, created.job_number))

    if results["renumbered"]:
        logger.warning(f"Import renumbered {len(results['renumbered'])} "
                       f"jobs for business {business_id}")
    return results


def import_jobs_csv(repo: Repository, business_id: int,
                    filepath: str | Path,
                    created_by: Optional[int] = None) -> dict:
    """Import jobs from CSV. Returns results dict with counts and errors."""
    filepath = Path(filepath)
    try:
        with open(filepath, "r", encoding="utf-8", newline="") as f:
            reader = csv.DictReader(f)
            return import_job_rows(
                repo, business_id, enumerate(reader, start=2), created_by
            )
    except (OSError, csv.Error) as e:
        return {"imported": 0, "skipped": 0, "renumbered": [],
                "errors": [f"File error: {e}"]}
