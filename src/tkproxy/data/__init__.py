"""On-disk storage for client captures and submission state."""
