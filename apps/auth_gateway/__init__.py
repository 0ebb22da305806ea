"""Example FastAPI service protected by Guardian Auth."""
