# fulfillment/__init__.py
"""
Order-fulfillment reconciliation engine.

Provides:
- Domain enums & models for ledger orders and trade proposals
- Link parsing and inventory matching for eligible orders
- Offer lifecycle controller folding trade outcomes back into the ledger
- Fixed-interval reconciliation scheduler over the outbound/inbound queues
"""
