"""Weather edge proxy service."""
