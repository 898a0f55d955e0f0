"""audit/ -- Fire-and-forget audit log persisted by a background worker."""
