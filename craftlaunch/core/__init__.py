"""Launch orchestration."""
