"""Real-time meeting transcription: VAD-segmented audio capture and a session-buffering STT server."""

__version__ = "0.1.0"
