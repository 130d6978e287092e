# ledger/__init__.py
"""Ledger gateway adapters: Google Sheets rows for the outbound/inbound order queues."""
