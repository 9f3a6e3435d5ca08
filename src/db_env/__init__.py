"""
DB Env - Shared storage environment for named database files

Hosts many independently named database files in one process-wide
environment, with reference-counted engine handles, transaction-scoped
typed reads and writes, cursor iteration, and a verify, salvage and
rewrite pipeline for damaged files.
"""

__version__ = "0.1.0"
__author__ = "Systems Engineering Portfolio"
