"""Service layer for billing enforcement and payment reconciliation."""
