"""HTTP front for the registry guard."""
