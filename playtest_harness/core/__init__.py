"""Settings, logging, exceptions and YAML loaders."""
