"""
Creates the administrator account.

    readify-create-admin --email admin@example.com --name "Admin"

The password is read from --password, READIFY_ADMIN_PASSWORD, or prompted.
"""

import argparse
import getpass
import os
import sys

from readify.blob_store import BlobStore
from readify.database import DatabaseManager
from readify.errors import ReadifyError
from readify.services.document_store import DocumentStore
from readify.services.user_service import UserService


def create_admin_user(email: str, password: str, name: str = "", db_path=None) -> dict:
    db = DatabaseManager(db_path)
    users = UserService(db, DocumentStore(db, BlobStore()))
    return users.create_admin(email, password, name=name or None)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Create the Readify administrator account.")
    parser.add_argument("--email", default=os.getenv("ADMIN_EMAIL", ""))
    parser.add_argument("--name", default="")
    parser.add_argument("--password", default=os.getenv("READIFY_ADMIN_PASSWORD", ""))
    parser.add_argument("--db", default=None, help="sqlite path (default: READIFY_DB_PATH)")
    args = parser.parse_args(argv)

    if not args.email:
        print("Error: --email (or ADMIN_EMAIL) is required.", file=sys.stderr)
        return 2
    password = args.password or getpass.getpass("Admin password: ")

    print("--- Creating admin user ---")
    try:
        user = create_admin_user(args.email, password, name=args.name, db_path=args.db)
    except ReadifyError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    print("Admin user created successfully!")
    print(f"Email: {user['email']}")
    print(f"Id: {user['id']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
