"""Runnable entry points (``python -m console_query.tasks.<name>``)."""
