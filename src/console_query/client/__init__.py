"""HTTP client for the console REST API."""
