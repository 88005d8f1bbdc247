"""SQLAlchemy ORM models."""

from jamgrid.models.traffic import RemoteTrafficObservation, TrafficObservation

__all__ = [
    "RemoteTrafficObservation",
    "TrafficObservation",
]
