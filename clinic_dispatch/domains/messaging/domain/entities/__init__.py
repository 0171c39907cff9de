from .appointment import Appointment
from .conversation import ConversationSession
from .ledger_entry import LedgerEntry

__all__ = ["Appointment", "ConversationSession", "LedgerEntry"]
