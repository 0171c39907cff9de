# ============================================================================
# SCOPE: APPLICATION LAYER (Messaging)
# Description: Channel send result type.
# ============================================================================
"""Send Result Type.

Kept in its own file so ports and adapters can import it without cycles.
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class SendResult:
    """Provider acknowledgement of an accepted message."""

    provider_message_id: str
    phone: str
    channel: str
    raw: dict[str, Any] = field(default_factory=dict)
