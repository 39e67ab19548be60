"""System adapters — package manager, service manager, database admin."""
