# steam/__init__.py
"""Steam trading-network adapters: trade offers, inventory, outcome polling and mobile confirmations."""
