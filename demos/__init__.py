"""Runnable examples of the tracking engine."""
