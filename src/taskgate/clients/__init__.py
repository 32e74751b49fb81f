"""Clients for talking to other taskgate services."""
