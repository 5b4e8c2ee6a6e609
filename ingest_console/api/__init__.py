"""HTTP API for the job console."""
