"""Visual generation and asset storage."""
