"""
Library for provisioning appliance images with secrets kept out of image layers.

.. include:: ../README.md
"""

__all__ = [
    "artifacts",
    "config",
    "credentials",
    "engine",
    "exceptions",
    "image",
    "phases",
    "provision",
    "readiness",
    "session",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
