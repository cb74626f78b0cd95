"""Workflow Canvas: design, validate, run and monitor workflows on a visual canvas."""

__version__ = "1.0.0"
