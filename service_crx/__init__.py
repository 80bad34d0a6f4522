"""CRX fetch proxy service."""
