"""
Unit tests for internal caller authentication.
"""
import os
import sys

# Add parent directory to path to import modules
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from middleware.internal_auth import bearer_token


def test_bearer_token_extraction():
    assert bearer_token("Bearer abc123") == "abc123"
    assert bearer_token("bearer  abc123 ") == "abc123"


def test_non_bearer_headers_are_ignored():
    assert bearer_token(None) is None
    assert bearer_token("") is None
    assert bearer_token("Basic dXNlcjpwYXNz") is None
    assert bearer_token("Bearer ") is None
