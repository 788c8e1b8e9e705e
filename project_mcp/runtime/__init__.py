"""Runtime configuration, logging and error handling."""
