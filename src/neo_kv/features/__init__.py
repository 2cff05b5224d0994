"""Feature packages for neo-kv."""
