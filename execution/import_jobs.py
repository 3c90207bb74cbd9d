"""Import jobs for a business from a CSV or XLSX file."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from workshop_desk.app import create_repository, setup_logging
from workshop_desk.io.csv_handler import import_jobs_csv
from workshop_desk.io.excel_handler import import_jobs_excel


def main():
    if len(sys.argv) < 3:
        print("Usage: python import_jobs.py <business_id> <input.csv|.xlsx>")
        sys.exit(1)

    setup_logging()
    business_id = int(sys.argv[1])
    filepath = Path(sys.argv[2])
    repo = create_repository()
    if repo.get_business(business_id) is None:
        print(f"Business {business_id} not found")
        sys.exit(1)

    if filepath.suffix.lower() == ".xlsx":
        results = import_jobs_excel(repo, business_id, filepath)
    else:
        results = import_jobs_csv(repo, business_id, filepath)

    print(f"Imported: {results['imported']}")
    print(f"Skipped:  {results['skipped']}")
    for supplied, assigned in results["renumbered"]:
        print(f"  renumbered {supplied} -> {assigned}")
    if results["errors"]:
        print("Errors:")
        for err in results["errors"]:
            print(f"  {err}")


if __name__ == "__main__":
    main()
