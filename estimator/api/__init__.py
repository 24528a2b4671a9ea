"""HTTP API for estimate sessions."""
