"""Generation, persistence and error-policy services."""
