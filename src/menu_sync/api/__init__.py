"""HTTP API for Menu Sync."""
