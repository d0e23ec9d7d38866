"""Persistent records: conversation threads, the audit trail and dead letters."""
