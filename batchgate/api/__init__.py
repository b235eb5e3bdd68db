"""HTTP API for launching and tracking batch jobs."""
