"""Testing utilities for in-process gateway simulations."""

from .fake_poe import BotResponse, FakePoe, encode_poe_event
from .harness import GatewayHarness

__all__ = [
    "BotResponse",
    "FakePoe",
    "GatewayHarness",
    "encode_poe_event",
]
