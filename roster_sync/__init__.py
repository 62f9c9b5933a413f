"""
Roster Sync - Converge directory user accounts to an HR personnel roster.

This package fetches the roster report, compares it with the directory's
user records and applies the create, update, suspend and move operations
needed to bring the directory in line.
"""

__version__ = "1.0.0"
__author__ = "Roster Sync Team"
