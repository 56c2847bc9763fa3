"""HTTP API for the workflow node engine."""
