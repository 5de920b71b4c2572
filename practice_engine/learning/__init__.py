"""Learning: content pool view and adaptive item selection."""
