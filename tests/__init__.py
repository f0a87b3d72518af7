"""
Test suite for schemata.

Unit tests live in tests/unit; shared fixtures are in tests/conftest.py.
"""
