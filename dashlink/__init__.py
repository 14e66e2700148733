"""Resilient API-communication layer for the dashboard backend."""
