"""Token estimation for rate-limit permits.

The estimate only sizes the token-bucket permit taken before a call;
actual usage comes back from the vendor in ``TokenUsage``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from tamma.models import MessageRequest

    TokenEstimator = Callable[[MessageRequest], int]

# Conservative: ~4 chars per token for prose, fewer for code
CHARS_PER_TOKEN = 4
DEFAULT_COMPLETION_TOKENS = 256


def estimate_text_tokens(text: str) -> int:
    """Estimate the number of tokens in a piece of text."""
    if not text:
        return 0
    return max(1, -(-len(text) // CHARS_PER_TOKEN))


def estimate_tokens(request: MessageRequest) -> int:
    """Estimate prompt plus completion tokens for a request.

    Completion budget is ``max_tokens`` when set, otherwise a small
    default. Always at least 1.
    """
    prompt = sum(estimate_text_tokens(m.text) for m in request.messages)
    completion = request.max_tokens or DEFAULT_COMPLETION_TOKENS
    return max(1, prompt + completion)
