"""
poetloop — a persistent chat assistant and a self-steering poet.

Conversations are stored in SQLite; the poet writes one poem per cycle and
picks the theme of the next one itself.
"""

__version__ = "0.3.0"
