"""StageFlow Core HTTP API."""
