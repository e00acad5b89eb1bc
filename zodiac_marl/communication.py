"""
Communication Channel Module.

Routes immutable messages between registered agents. Each receiver keeps
its own inbox; the channel only hands messages over. Delivery to an
unknown receiver reports failure instead of raising.
"""

import logging
from collections import Counter
from typing import Dict, List, Optional, Protocol, Sequence

from .structures import BROADCAST, Message, MessageKind

logger = logging.getLogger(__name__)


class MessageReceiver(Protocol):
    """Anything that can take messages into its inbox."""
    agent_id: str

    def receive_message(self, message: Message) -> None:
        ...


# Base value of a message of each kind for the effectiveness score
KIND_VALUE: Dict[MessageKind, float] = {
    MessageKind.INFORMATION: 0.3,
    MessageKind.OFFER: 0.5,
    MessageKind.ACCEPT: 0.8,
    MessageKind.REQUEST: 0.4,
    MessageKind.REJECT: 0.2,
}


def communication_effectiveness(messages: Sequence[Message]) -> float:
    """
    Average value of ``messages`` capped at 1.

    Each message scores its kind's base value plus 0.1 per priority level.
    """
    if not messages:
        return 0.0
    total = sum(KIND_VALUE[m.kind] + m.priority * 0.1 for m in messages)
    return min(1.0, total / len(messages))


class CommunicationChannel:
    """
    Point-to-point and broadcast delivery between agents.

    Attributes:
        enabled: When False every delivery fails
        receivers: Registered receivers by id
        log: Every message handed over, in delivery order
        kind_counts: Delivered messages per kind
        failed_deliveries: Messages addressed to unknown receivers
    """

    def __init__(self, enabled: bool = True, max_log: int = 10000):
        self.enabled = enabled
        self.max_log = max_log
        self.receivers: Dict[str, MessageReceiver] = {}
        self.log: List[Message] = []
        self.kind_counts: Counter = Counter()
        self.failed_deliveries = 0

    def register(self, receiver: MessageReceiver):
        self.receivers[receiver.agent_id] = receiver

    def unregister(self, agent_id: str):
        self.receivers.pop(agent_id, None)

    def __contains__(self, agent_id: str) -> bool:
        return agent_id in self.receivers

    def _record(self, message: Message):
        self.log.append(message)
        if len(self.log) > self.max_log:
            del self.log[: len(self.log) - self.max_log]
        self.kind_counts[message.kind] += 1

    def deliver(self, message: Message) -> bool:
        """
        Deliver ``message`` to its receiver.

        Returns:
            False when the channel is disabled or the receiver is unknown
        """
        if not self.enabled:
            return False
        receiver = self.receivers.get(message.receiver_id)
        if receiver is None:
            self.failed_deliveries += 1
            logger.debug("No receiver '%s' for %s message from %s",
                         message.receiver_id, message.kind.value, message.sender_id)
            return False
        receiver.receive_message(message)
        self._record(message)
        return True

    def broadcast(self, message: Message) -> int:
        """
        Deliver ``message`` to every registered agent except its sender.

        Returns:
            Number of receivers reached
        """
        if not self.enabled:
            return 0
        delivered = 0
        for agent_id, receiver in list(self.receivers.items()):
            if agent_id == message.sender_id:
                continue
            receiver.receive_message(message)
            delivered += 1
        if delivered:
            self._record(message)
        return delivered

    def send(self, message: Message) -> bool:
        """Route by receiver: broadcast marker or a single id."""
        if message.receiver_id == BROADCAST:
            return self.broadcast(message) > 0
        return self.deliver(message)

    def send_all(self, messages: Sequence[Message]) -> int:
        """Send several messages; returns how many reached someone."""
        return sum(1 for message in messages if self.send(message))

    def messages_between(self, sender_id: str, receiver_id: Optional[str] = None) -> List[Message]:
        return [m for m in self.log
                if m.sender_id == sender_id and (receiver_id is None or m.receiver_id == receiver_id)]

    def effectiveness(self, last: int = 100) -> float:
        return communication_effectiveness(self.log[-last:])

    def get_statistics(self) -> Dict[str, float]:
        stats = {f"{kind.value}_messages": self.kind_counts.get(kind, 0) for kind in MessageKind}
        stats["total_messages"] = sum(self.kind_counts.values())
        stats["failed_deliveries"] = self.failed_deliveries
        stats["effectiveness"] = self.effectiveness()
        return stats
