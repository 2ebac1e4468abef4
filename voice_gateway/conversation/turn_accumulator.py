"""
Per-turn accumulator for a streamed model response.

Collects text fragments and captures the first function call. A function
call fragment does not end the turn: the model may keep streaming text
after it, and that text belongs to the preamble committed before the tool
runs. Later function calls in the same stream are counted and dropped.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from voice_gateway.services.llm import FunctionCall, ModelChunk

logger = logging.getLogger(__name__)


@dataclass
class TurnAccumulator:
    fragments: list[str] = field(default_factory=list)
    function_call: Optional[FunctionCall] = None
    ignored_calls: int = 0
    thought_signature: Optional[bytes] = None
    response_id: Optional[str] = None

    def feed(self, chunk: ModelChunk) -> str:
        """Absorb one chunk and return the text delta to forward to the client."""
        if chunk.response_id and self.response_id is None:
            self.response_id = chunk.response_id
        if chunk.thought_signature and self.thought_signature is None:
            self.thought_signature = chunk.thought_signature
        for call in chunk.function_calls:
            if self.function_call is None:
                self.function_call = call
            else:
                self.ignored_calls += 1
                logger.info("Ignoring extra function call '%s' in this turn", call.name)
        if chunk.text:
            self.fragments.append(chunk.text)
        return chunk.text

    @property
    def text(self) -> str:
        return "".join(self.fragments).strip()

    @property
    def has_text(self) -> bool:
        return bool(self.text)
