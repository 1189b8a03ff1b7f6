"""HTTP API: health and administration."""
