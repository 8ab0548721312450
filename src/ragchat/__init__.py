"""Document-grounded chat service."""
