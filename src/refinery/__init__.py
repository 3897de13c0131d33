"""Refinery: reading-note records and spaced-repetition scheduling."""

from refinery.consts import VERSION

__version__ = VERSION
