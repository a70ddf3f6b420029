"""CoachSync — multi-platform training data reconciliation service."""
