"""Decide how a reply is delivered under a chat platform's message-size limit."""

from dataclasses import dataclass, field
from typing import Literal


@dataclass
class DeliveryPlan:
    kind: Literal["message", "chunks", "file"]
    parts: list[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(self.parts)


def plan_delivery(reply: str, char_limit: int = 2000, file_threshold: int = 1000) -> DeliveryPlan:
    """File above ``file_threshold``, fixed-width chunks above ``char_limit``, else one message."""
    if char_limit <= 0:
        raise ValueError("char_limit must be positive")

    if len(reply) > file_threshold:
        return DeliveryPlan(kind="file", parts=[reply])
    if len(reply) > char_limit:
        chunks = [reply[i:i + char_limit] for i in range(0, len(reply), char_limit)]
        return DeliveryPlan(kind="chunks", parts=chunks)
    return DeliveryPlan(kind="message", parts=[reply])
