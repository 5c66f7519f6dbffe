"""Core solver logic: intents, quoting, settlement and configuration."""
