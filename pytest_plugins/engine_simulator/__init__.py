"""Pytest plugin running the Engine API scenarios against hive clients."""
