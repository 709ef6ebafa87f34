"""Test package for the Profile CRM.

Covers the record store and schema, duplicate detection, backups and
retention, the request bridge, settings, the application lifecycle and the CLI.
"""
