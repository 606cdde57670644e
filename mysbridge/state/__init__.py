"""Sensor network model, snapshot persistence and status reporting."""
