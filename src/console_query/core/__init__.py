"""Configuration and Redis connection."""
