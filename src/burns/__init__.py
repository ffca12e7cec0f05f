"""Executive-planner-worker swarm coordination over file-backed records."""

__version__ = "0.1.0"
