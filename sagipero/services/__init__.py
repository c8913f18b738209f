"""Sagipero client services.

- sync_core: normalization, ownership, status machine, timeline, reconciliation
- channels: REST client, push subscription, polling loop, location publisher
- session: session/lifecycle controller and the presentation bridge
"""
