"""Message relay between the two session roles."""

from continuum.relay.broker import RelayBroker, RelayMessage

__all__ = ["RelayBroker", "RelayMessage"]
