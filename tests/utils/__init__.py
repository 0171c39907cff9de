"""Test utilities and helpers."""

from tests.utils.factories import build_webhook_payload, button_reply_message, make_appointment, seed_appointment, text_message
from tests.utils.fakes import FakeChannel

__all__ = [
    "FakeChannel",
    "build_webhook_payload",
    "button_reply_message",
    "make_appointment",
    "seed_appointment",
    "text_message",
]
