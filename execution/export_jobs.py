"""Export the recent-jobs backup for a business from the command line."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from workshop_desk.app import create_repository, setup_logging
from workshop_desk.config import Config
from workshop_desk.io.csv_handler import export_job_backup_csv
from workshop_desk.io.excel_handler import export_job_backup_excel


def main():
    if len(sys.argv) < 2:
        print("Usage: python export_jobs.py <business_id> [output.csv|.xlsx] "
              "[days]")
        sys.exit(1)

    setup_logging()
    business_id = int(sys.argv[1])
    repo = create_repository()
    if repo.get_business(business_id) is None:
        print(f"Business {business_id} not found")
        sys.exit(1)

    if len(sys.argv) > 2:
        filepath = Path(sys.argv[2])
    else:
        stamp = repo.clock().strftime("%Y%m%d")
        filepath = (Path(Config.EXPORTS_DIRECTORY)
                    / f"jobs_b{business_id}_{stamp}.csv")
    days = int(sys.argv[3]) if len(sys.argv) > 3 else None

    if filepath.suffix.lower() == ".xlsx":
        count = export_job_backup_excel(repo, business_id, filepath, days)
    else:
        count = export_job_backup_csv(repo, business_id, filepath, days)

    print(f"Exported {count} jobs to {filepath}")


if __name__ == "__main__":
    main()
