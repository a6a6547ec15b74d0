"""Reference services for the Leciona sync engine."""
