"""LevelUp learning profile backend."""
