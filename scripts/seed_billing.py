"""Seed the default premium plans."""

from dotenv import load_dotenv

from app.db import SessionLocal
from app.services.billing.plans import plans


def main() -> None:
    load_dotenv()
    db = SessionLocal()
    try:
        created = plans.seed_defaults(db)
        print(f"Billing plan seed complete ({created} created).")
    finally:
        db.close()


if __name__ == "__main__":
    main()
