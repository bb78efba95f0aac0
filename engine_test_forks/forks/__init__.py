"""Listing of all forks the Engine API simulator can drive."""
