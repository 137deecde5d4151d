# Routing Layer
# Session-scoped unicast and broadcast of signaling events

from rendezvous.routing.dispatcher import RelayDispatcher, DISPATCHABLE_TYPES

__all__ = ["RelayDispatcher", "DISPATCHABLE_TYPES"]
