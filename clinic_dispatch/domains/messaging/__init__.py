"""
Messaging domain.

Outbound confirmation templates and reminders, inbound confirm/cancel
replies, and the ledger that reconciles both with appointment state.
"""
