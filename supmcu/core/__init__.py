"""Codec, engine, discovery, and catalog internals."""
