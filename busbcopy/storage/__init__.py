"""Device discovery, verification, mounting and copy primitives."""
