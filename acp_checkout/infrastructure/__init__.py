"""Infrastructure layer - configuration, logging, stores and external adapters."""
