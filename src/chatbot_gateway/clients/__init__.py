from .words import DEFAULT_WORDS, HttpWordSource, StaticWordSource, WordEntry, WordSource

__all__ = ["DEFAULT_WORDS", "HttpWordSource", "StaticWordSource", "WordEntry", "WordSource"]
