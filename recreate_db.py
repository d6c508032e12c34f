"""
Script to recreate the local SQLite database from the current models
"""
import os
import sys
from sqlalchemy import inspect
from app.config import settings
from app.database import Base, engine
from app.models import *  # noqa: F401,F403

if not settings.DATABASE_URL.startswith("sqlite:///"):
    print("recreate_db.py only manages local SQLite databases; use alembic for other backends")
    sys.exit(1)

# Delete existing database if it exists
db_file = settings.DATABASE_URL.replace("sqlite:///", "", 1)
if os.path.exists(db_file):
    try:
        os.remove(db_file)
        print(f"Deleted existing {db_file}")
    except OSError as e:
        print(f"Could not delete {db_file}: {e}")
        print("Please stop the server and try again")
        sys.exit(1)

# Create all tables
print("Creating database tables...")
Base.metadata.create_all(bind=engine)
print("Database created successfully!")

# Verify tables were created
tables = inspect(engine).get_table_names()
print(f"Created tables: {', '.join(tables)}")
