"""Settings, logging preset and device descriptor loading."""
