"""Tests for customer-commit."""
