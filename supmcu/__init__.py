"""Talk to Pumpkin SupMCU modules: telemetry codec, command engine, discovery, and fan-out."""

__version__ = "0.5.0"
