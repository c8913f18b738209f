"""Sagipero emergency client: lifecycle synchronization core and channel adapters."""
