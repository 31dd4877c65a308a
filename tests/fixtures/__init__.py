"""Shared in-memory fakes for the test suite."""
