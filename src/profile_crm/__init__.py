"""Profile CRM - contact profiles, interaction log and database backups."""

__version__ = "0.1.0"
