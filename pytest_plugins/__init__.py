"""Pytest plugins of the Engine API simulator."""
