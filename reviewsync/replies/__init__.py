"""AI reply drafting, rate limiting and publishing to Google."""
