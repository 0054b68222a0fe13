"""RFQ race engine — fair, timezone-aware broadcast and first-click award of RFQs."""

__version__ = "0.1.0"
