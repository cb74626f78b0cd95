"""REST API for the workflow canvas."""
