"""Domain enums."""
