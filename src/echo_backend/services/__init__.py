"""Service layer for the Echo voice backend."""
