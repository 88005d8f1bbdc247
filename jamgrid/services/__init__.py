"""Background services and pipeline components."""
