"""Integration test package.

These tests run full chains, sensitivity sweeps and the CLI.  They are
slower than the unit tests and carry the ``integration`` marker.
"""
