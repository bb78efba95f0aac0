"""Command line entry points of the Engine API simulator."""
