"""BIG POS commerce backend."""
