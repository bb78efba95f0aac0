"""Tests of the session coordination plugin."""
