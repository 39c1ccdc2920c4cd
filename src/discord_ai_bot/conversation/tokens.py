"""
Token estimation without a real tokenizer.

Both providers run LLaMA 3.1 models, so the only special markers we need
to recognize are the LLaMA 3 prompt-format sentinels. Everything else is
counted as roughly four characters per token, rounded up, which slightly
overestimates for English text.
"""

import math
from typing import Iterable, Sequence, Union

from discord_ai_bot.llm.models import ChatMessage


BEGIN_OF_TEXT = "<|begin_of_text|>"
START_HEADER = "<|start_header_id|>"
END_HEADER = "<|end_header_id|>"
END_OF_TURN = "<|eot_id|>"

SPECIAL_TOKENS = (BEGIN_OF_TEXT, START_HEADER, END_HEADER, END_OF_TURN)

CHARS_PER_TOKEN = 4
MESSAGE_OVERHEAD_TOKENS = 3


class TokenEstimator:
    """
    Approximates token cost of text and conversation turns.

    Each special marker counts as one token and its characters are removed
    before the character-based estimate. Estimating a list of turns adds a
    fixed overhead per turn for role and formatting tokens.
    """

    def __init__(
        self,
        chars_per_token: int = CHARS_PER_TOKEN,
        message_overhead: int = MESSAGE_OVERHEAD_TOKENS,
        special_tokens: Iterable[str] = SPECIAL_TOKENS,
    ) -> None:
        if chars_per_token <= 0:
            raise ValueError("chars_per_token must be positive")
        self.chars_per_token = chars_per_token
        self.message_overhead = message_overhead
        self.special_tokens = tuple(special_tokens)

    def estimate_tokens(self, text: str) -> int:
        """
        Estimate the token count of a single string.

        Each complete template marker counts as one token and the remaining
        characters are costed by ``chars_per_token``. An incomplete marker is
        plain text, so appending the closing ``|>`` can lower the estimate
        (``"<|eot_id|"`` is 3, ``"<|eot_id|>"`` is 1). The estimate only grows
        with length for text that contains no markers.
        """
        if not text:
            return 0

        special_count = 0
        clean_text = text
        for marker in self.special_tokens:
            occurrences = clean_text.count(marker)
            if occurrences:
                special_count += occurrences
                clean_text = clean_text.replace(marker, "")

        return special_count + math.ceil(len(clean_text) / self.chars_per_token)

    def count_message_tokens(self, message: ChatMessage) -> int:
        """Estimate one turn, including its structural overhead."""
        if not message.content:
            return 0
        return self.estimate_tokens(message.content) + self.message_overhead

    def count_tokens(self, value: Union[str, Sequence[ChatMessage]]) -> int:
        """
        Estimate either a string or a sequence of turns.

        Turns with empty content are skipped entirely, overhead included.
        """
        if isinstance(value, str):
            return self.estimate_tokens(value)
        return sum(self.count_message_tokens(message) for message in value)
