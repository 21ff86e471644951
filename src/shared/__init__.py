"""Shared runtime modules for the Lambda functions."""
