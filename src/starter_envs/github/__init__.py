"""GitHub integration for publishing deployment credentials."""
