"""Core domain: mastery model and error taxonomy."""
