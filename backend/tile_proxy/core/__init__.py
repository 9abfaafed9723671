"""Settings, logging setup and the error taxonomy."""
