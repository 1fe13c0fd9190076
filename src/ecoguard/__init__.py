"""EcoGuard environmental hazard ingestion, risk scoring and alert fanout."""

__version__ = "0.1.0"
