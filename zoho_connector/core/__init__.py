"""Configuration and logging shared by every entrypoint."""
