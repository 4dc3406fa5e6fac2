"""emuident package root.

Identification and checksum verification of game image collections.
"""

__version__ = "1.0.0"
