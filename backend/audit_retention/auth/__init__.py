"""Admin authentication for the retention control surface."""
