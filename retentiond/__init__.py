"""
Backup retention daemon.

This package decides which database backup archives in object storage to
keep under a tiered daily/weekly/monthly policy with count and size caps,
and deletes the rest.
"""

__version__ = "0.1.0"
