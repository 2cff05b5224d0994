"""Core building blocks shared by neo-kv features."""
