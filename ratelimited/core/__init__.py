"""Configuration, logging, errors and HTTP wiring."""
