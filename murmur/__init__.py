"""murmur - voice dictation through a local whisper.cpp transcription server."""

__version__ = "0.1.0"
