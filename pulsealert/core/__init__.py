"""Configuration, logging, and persistence plumbing."""
