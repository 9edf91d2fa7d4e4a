"""Orchestrators that wrap the scoring core with persistence and API calls."""
