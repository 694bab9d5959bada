"""
DSA transparency dump ingestion.

Downloads daily statement-of-reasons dumps, unpacks nested archives,
normalizes CSV rows into decisions and loads them into PostgreSQL
with a pool of concurrent workers.
"""

__version__ = "1.0.0"
