"""Main API function."""
