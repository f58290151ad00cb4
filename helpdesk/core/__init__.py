"""Configuration, authentication and error handling."""
