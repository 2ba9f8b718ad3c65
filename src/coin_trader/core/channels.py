"""
Event channels and payload envelopes.

Three fixed channels connect the processes:
    analyze_channel  - ingestion -> analysis ("TICK:<symbol>")
    trading_channel  - analysis  -> trading  ("BUY:<symbol>" / "SELL:<symbol>")
    manager_channel  - anyone    -> manager  ("SEND:<free text>")

Payloads are "VERB" or "VERB:ARG". Consumers re-read state from the store
rather than trusting anything beyond the verb and its scope argument.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from coin_trader.core.errors import InvalidPayloadError

TICK = "TICK"
BUY = "BUY"
SELL = "SELL"
SEND = "SEND"


class Channel(str, Enum):
    """NOTIFY channel names. Lowercase so LISTEN and pg_notify agree."""

    ANALYZE = "analyze_channel"
    TRADING = "trading_channel"
    MANAGER = "manager_channel"


@dataclass(frozen=True)
class EventEnvelope:
    """A parsed notification payload."""

    verb: str
    argument: str = ""

    @classmethod
    def parse(cls, payload: str) -> "EventEnvelope":
        """
        Split a payload into verb and argument.

        Only the first ':' separates, so SEND text may contain colons.
        Raises InvalidPayloadError on an empty verb.
        """
        verb, _, argument = (payload or "").partition(":")
        verb = verb.strip().upper()
        if not verb:
            raise InvalidPayloadError(detail=repr(payload))
        if verb != SEND:
            argument = argument.strip()
        return cls(verb=verb, argument=argument)

    def encode(self) -> str:
        if not self.argument:
            return self.verb
        return f"{self.verb}:{self.argument}"


def tick_event(symbol: str) -> str:
    return EventEnvelope(TICK, symbol).encode()


def trade_event(side: str, symbol: str) -> str:
    return EventEnvelope(side, symbol).encode()


def manager_message(text: str) -> str:
    return EventEnvelope(SEND, text).encode()
