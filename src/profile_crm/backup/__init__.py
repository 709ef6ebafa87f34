"""
Profile CRM - Backup and Retention Module

Creates validated, timestamped snapshots of the CRM database and enforces
the retention window.
"""

from .manager import (
    BackupInfo,
    BackupManager,
    format_backup_timestamp,
    parse_backup_timestamp,
)

__all__ = [
    'BackupInfo',
    'BackupManager',
    'format_backup_timestamp',
    'parse_backup_timestamp',
]
