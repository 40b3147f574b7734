"""Fakes and sample world-state data shared by the test suite."""
