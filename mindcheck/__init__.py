"""Check-in session lifecycle, analysis ingestion and report aggregation."""

__version__ = "0.1.0"
