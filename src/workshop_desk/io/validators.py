"""Validation rules for import data."""

import math

from workshop_desk.utils.constants import JOB_STATUSES


def validate_job_row(row: dict, row_num: int) -> list[str]:
    """Validate a single row of job import data. Returns list of error strings."""
    errors = []

    job_number = (row.get("job_number") or "").strip()
    if len(job_number) > 50:
        errors.append(f"Row {row_num}: job_number exceeds 50 chars")

    desc = (row.get("description") or "").strip()
    if not desc:
        errors.append(f"Row {row_num}: description is required")

    status = (row.get("status") or "").strip()
    if status and status not in JOB_STATUSES:
        errors.append(f"Row {row_num}: unknown status '{status}'")

    hours = row.get("estimated_hours")
    if hours not in (None, ""):
        try:
            h = float(hours)
            if not math.isfinite(h):
                errors.append(
                    f"Row {row_num}: estimated_hours must be a finite number")
            elif h < 0:
                errors.append(
                    f"Row {row_num}: estimated_hours cannot be negative")
        except (ValueError, TypeError):
            errors.append(f"Row {row_num}: estimated_hours must be a number")

    email = (row.get("customer_email") or "").strip()
    if email and "@" not in email:
        errors.append(f"Row {row_num}: customer_email is not an e-mail address")

    return errors
