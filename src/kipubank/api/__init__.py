"""HTTP API for KipuBank."""
