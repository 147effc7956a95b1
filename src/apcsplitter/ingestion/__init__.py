"""Ingestion layer.

Interprets broker payloads: GTFS Realtime vehicle-position batches and
passenger-counter mapping snapshots.
"""

__all__: list[str] = []
