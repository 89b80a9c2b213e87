"""HTTP routes for the connector API."""
