"""Argument building, staging and process launch for batch jobs."""
