"""Business services: provider integration, storage, submission and reconciliation."""
