"""Command line tool for customer-commit."""
