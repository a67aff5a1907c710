"""
LLM Rewrite - AI rewriting for documents of any size.

A Python application that splits large documents into size-bounded parts,
rewrites each part with an LLM provider, and reassembles the result while
showing progress as parts complete.
"""

__version__ = "0.1.0"
__description__ = "AI rewriting for documents of any size"
