"""Helpers shared by the client and the services."""
