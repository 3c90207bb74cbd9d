"""Permanently delete a business and all of its data.

Prints what will be removed and asks for confirmation unless --yes is
given. Run db_backup.py first if the data may be needed again.
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from workshop_desk.app import create_repository, setup_logging


def main():
    args = [a for a in sys.argv[1:] if a != "--yes"]
    confirmed = "--yes" in sys.argv[1:]
    if len(args) != 1:
        print("Usage: python offboard_business.py <business_id> [--yes]")
        sys.exit(1)

    setup_logging()
    business_id = int(args[0])
    repo = create_repository()
    business = repo.get_business(business_id)
    if business is None:
        print(f"Business {business_id} not found")
        sys.exit(1)

    counts = repo.teardown.preview(business_id)
    print(f"Deleting business {business_id} ({business.name}):")
    for table, count in counts.items():
        if count:
            print(f"  {table:<30} {count:>6}")

    if not confirmed:
        answer = input("Type the business name to confirm: ")
        if answer.strip() != business.name:
            print("Aborted")
            sys.exit(1)

    if repo.permanently_delete_business(business_id):
        print(f"Business {business_id} deleted")
    else:
        print(f"Business {business_id} was not deleted")
        sys.exit(1)


if __name__ == "__main__":
    main()
