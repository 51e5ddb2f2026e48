"""Logfeed - Nitrado log ingestion and Discord feeds"""

__version__ = "1.0.0"
