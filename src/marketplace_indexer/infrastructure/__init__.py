"""Infrastructure: persistence, content storage and encryption."""
