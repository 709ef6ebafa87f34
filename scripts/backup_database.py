#!/usr/bin/env python3
"""
Database Backup Script for the Profile CRM

Creates a validated database backup and prunes old ones; intended for
manual use or a cron job while the desktop application is closed.
"""

import argparse
import sys
from pathlib import Path

from loguru import logger

from profile_crm.backup import BackupManager
from profile_crm.config.settings import ConfigurationError, load_settings
from profile_crm.database.operations import DatabaseError, RecordStore


def main() -> None:
    """Main backup execution."""
    parser = argparse.ArgumentParser(description="Create database backup")
    parser.add_argument('--config', type=Path, default=None,
                        help='JSON configuration file (default: config/crm.json)')
    parser.add_argument('--strategy', choices=['copy', 'dump'],
                        help='Backup strategy (default: from configuration)')
    parser.add_argument('--keep', type=int,
                        help='Number of backups to keep (default: from configuration)')
    parser.add_argument('--no-validate', action='store_true',
                        help='Skip backup integrity validation')
    parser.add_argument('--output-dir', type=Path,
                        help='Custom backup directory')

    args = parser.parse_args()

    # Setup logging
    logger.remove()
    logger.add(sys.stdout, level="INFO", format="{time:HH:mm:ss} | {level} | {message}")

    try:
        settings = load_settings(args.config)

        if not Path(settings.database_path).exists():
            logger.warning(f"No database found at {settings.database_path}. Nothing to backup.")
            return

        with RecordStore(settings.database_path) as store:
            backup_manager = BackupManager(
                store,
                backup_directory=args.output_dir or settings.backup_directory,
                retention_count=args.keep or settings.retention_count,
                prefix=settings.backup_prefix,
                strategy=args.strategy or settings.backup_strategy,
                validate=not args.no_validate
            )

            logger.info("Starting database backup...")
            backup_file = backup_manager.create_backup()
            logger.info(f"Backup completed successfully: {backup_file}")

            backup_info = backup_manager.list_backups()
            if backup_info:
                latest = backup_info[0]
                logger.info(f"Backup size: {latest.size_mb:.2f} MB")
                logger.info(f"Backup checksum: {latest.checksum[:16]}...")
                logger.info(f"Backups retained: {len(backup_info)}")

    except (ConfigurationError, DatabaseError, ValueError) as e:
        logger.error(f"Backup failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
