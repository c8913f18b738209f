"""Shared models and utilities for the Sagipero client."""
