"""Clients for systems outside the platform: the exchange venue and the event stream."""
