#!/usr/bin/env python3
"""
Database management script for deployment.

Usage:
    python manage_db.py deploy
        Apply migrations (run during the build/deployment pipeline).
    python manage_db.py whitelist <user_id> <email> [notes]
        Allow a user to create tournaments.
    python manage_db.py unwhitelist <user_id>
"""
import os
import sys
import logging

# Add current directory to path so we can import podplay
sys.path.append(os.getcwd())

from podplay.app import create_app
from flask_migrate import upgrade

logger = logging.getLogger('manage_db')


def deploy(app):
    """Run deployment tasks."""
    logger.info("Starting database migration...")
    with app.app_context():
        try:
            upgrade()
            logger.info("Database migrations applied.")
        except Exception:
            logger.exception("Error applying migrations")
            sys.exit(1)


def whitelist(app, user_id: str, email: str, notes: str = None):
    with app.app_context():
        success, message = app.registry.add_to_whitelist(user_id, email, added_by='manage_db', notes=notes)
        logger.info(message)
        if not success:
            sys.exit(1)


def unwhitelist(app, user_id: str):
    with app.app_context():
        success, message = app.registry.remove_from_whitelist(user_id)
        logger.info(message)
        if not success:
            sys.exit(1)


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO, format='%(levelname)s %(message)s')

    command = sys.argv[1] if len(sys.argv) > 1 else 'deploy'
    app = create_app()

    if command == 'deploy':
        deploy(app)
    elif command == 'whitelist' and len(sys.argv) >= 4:
        whitelist(app, sys.argv[2], sys.argv[3], sys.argv[4] if len(sys.argv) > 4 else None)
    elif command == 'unwhitelist' and len(sys.argv) == 3:
        unwhitelist(app, sys.argv[2])
    else:
        print(__doc__)
        sys.exit(1)
