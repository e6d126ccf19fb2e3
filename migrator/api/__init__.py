"""Report API for migration checkpoints."""
