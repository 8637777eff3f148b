"""Built-in command sets."""
