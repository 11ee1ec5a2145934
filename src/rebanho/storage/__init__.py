"""Storage module - animal photo upload."""
