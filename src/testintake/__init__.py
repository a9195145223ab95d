"""testintake - mobile test-result ingestion and reconciliation API."""

__version__ = "0.1.0"
