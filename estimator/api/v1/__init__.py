"""Version 1 of the estimate session API."""
