"""
Audio format constants shared by the server and the capture client.

The wire format is fixed; these are not configurable.
"""

SAMPLE_RATE = 16000
"""Samples per second of every PCM stream."""

CHANNELS = 1
"""Mono audio only."""

BYTES_PER_SAMPLE = 2
"""16-bit signed little-endian PCM."""

FRAME_SIZE = 4096
"""Samples per capture frame on the client."""
