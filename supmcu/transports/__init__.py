"""Bus transports."""
