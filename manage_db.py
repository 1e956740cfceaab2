#!/usr/bin/env python3
"""
Database management script for deployment.

Usage:
    python manage_db.py create     # Create missing tables (default)
    python manage_db.py reset      # Drop and recreate every table
"""
import os
import sys

# Add current directory to path so we can import tournament_core
sys.path.append(os.getcwd())

from tournament_core.app import create_app
from tournament_core.models import db


def create():
    app = create_app()
    with app.app_context():
        db.create_all()
    print("Tables created.")


def reset():
    app = create_app()
    with app.app_context():
        db.drop_all()
        db.create_all()
    print("Tables dropped and recreated.")


if __name__ == '__main__':
    command = sys.argv[1] if len(sys.argv) > 1 else 'create'

    if command == 'create':
        create()
    elif command == 'reset':
        reset()
    else:
        print(f"Unknown command: {command}")
        print("Usage: python manage_db.py [create|reset]")
        sys.exit(1)
