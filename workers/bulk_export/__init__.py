"""Background worker running queued Zoho bulk exports."""
