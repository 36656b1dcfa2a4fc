"""HTTP API for Drapeworks (FastAPI)."""
