"""Real-time infrastructure — in-process fan-out plus an optional Redis relay.

Learn: Events flow through three layers:
1. Services → SubscriptionRegistry.publish (per-process, best-effort)
2. Registry subscription → SSE stream / chat websocket (per connection)
3. RealtimeRelay → Redis PUBLISH → other nodes' registries

The database row is always written first; everything here is delivery.
"""
