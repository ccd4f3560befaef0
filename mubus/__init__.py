"""mubus - mail index command server over a message bus."""

__version__ = "0.1.0"
__logo__ = "✉"
