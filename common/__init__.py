"""Utilities shared across the entrypoint: commands, logging, files, databases."""
