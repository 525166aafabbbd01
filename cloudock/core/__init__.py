"""Core module - Hexagonal architecture ports, domain and adapters."""
