"""WhatsApp webhook relay: event reconciliation, message ledger and contact state."""

__version__ = "1.0.0"
