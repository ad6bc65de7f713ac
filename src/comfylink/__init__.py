"""comfylink: job submission and history for ComfyUI-style workflow servers."""

__version__ = "0.1.0"
