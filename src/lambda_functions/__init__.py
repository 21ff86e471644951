"""Lambda function handlers."""
