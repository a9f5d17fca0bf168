from .http_sender import HttpSender

__all__ = ["HttpSender"]
