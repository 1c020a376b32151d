"""Observation strategies: push (new heads) and poll (timer)."""
