"""One-time script to create a pharmacist account.

Usage:
    python -m backend.create_admin
"""

from __future__ import annotations

import getpass

from sqlalchemy import func

from backend.app.core.database import SessionLocal
from backend.app.core.security import get_password_hash

# Import all models so SQLAlchemy resolves relationships
import backend.app.models.accounting  # noqa: F401

from backend.app.models.user import User


def main() -> None:
    username = input("Username [admin]: ").strip() or "admin"
    password = getpass.getpass("Password: ")
    if not password:
        print("Error: password cannot be empty.")
        return
    pharmacy_name = input("Pharmacy name: ").strip() or None
    email = input("Alert email (optional): ").strip() or None

    db = SessionLocal()
    try:
        existing = db.query(User).filter(
            func.lower(User.username) == username.lower()
        ).first()
        if existing:
            existing.hashed_password = get_password_hash(password)
            existing.is_active = True
            if pharmacy_name:
                existing.pharmacy_name = pharmacy_name
            if email:
                existing.email = email
            db.commit()
            print("User already exists, password reset!")
            print(f"  ID:       {existing.id}")
            print(f"  Username: {username}")
            return

        user = User(
            username=username,
            hashed_password=get_password_hash(password),
            pharmacy_name=pharmacy_name,
            email=email,
        )
        db.add(user)
        db.commit()
        db.refresh(user)

        print("User created successfully!")
        print(f"  ID:       {user.id}")
        print(f"  Username: {username}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
