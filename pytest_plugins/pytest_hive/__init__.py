"""Pytest plugin reporting scenario results to a hive simulator."""
