"""
Authentication helpers for the Gateway service.
"""

from .tokenizer import JWTTokenizer, Tokenizer

__all__ = [
    "JWTTokenizer",
    "Tokenizer",
]
