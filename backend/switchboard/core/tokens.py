from typing import Optional

import tiktoken

_tokenizer: Optional[tiktoken.Encoding] = None


def _get_tokenizer() -> tiktoken.Encoding:
    global _tokenizer
    if _tokenizer is None:
        _tokenizer = tiktoken.get_encoding("cl100k_base")
    return _tokenizer


def estimate_tokens(text: str) -> int:
    if not text:
        return 0
    try:
        return len(_get_tokenizer().encode(text))
    except Exception:
        return len(text) // 4
