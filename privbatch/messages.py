"""
Message shapes carried between agent processes on the pub/sub bus
"""
import itertools
import time
from enum import Enum
from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

from .models import ReadinessSignal

_message_counter = itertools.count(1)


class MessageTopic(str, Enum):
    """Bus topics"""
    SIGNAL_DETECTED = "signal_detected"
    COMMITMENT_SUBMITTED = "commitment_submitted"
    REVEAL_SUBMITTED = "reveal_submitted"
    BATCH_EXECUTED = "batch_executed"
    COORDINATION_REQUEST = "coordination_request"  # readiness signals travel here
    MARKET_INSIGHT = "market_insight"
    STATE_UPDATE = "state_update"
    CUSTOM = "custom"


def _next_message_id() -> str:
    return f"msg-{next(_message_counter)}-{int(time.time() * 1000)}"


class AgentMessage(BaseModel):
    """Message format for inter-agent communication"""
    message_id: str = Field(default_factory=_next_message_id)
    sender: str
    topic: MessageTopic
    pool_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: float = Field(default_factory=time.time)
    priority: int = 1  # 1=Low, 5=Critical


def readiness_message(signal: ReadinessSignal) -> AgentMessage:
    """Wrap a readiness signal for publication"""
    return AgentMessage(
        sender=signal.agent_id,
        topic=MessageTopic.COORDINATION_REQUEST,
        pool_id=signal.pool_id,
        payload={
            "ready": signal.ready,
            "pending_commitments": signal.pending_commitments,
            "preferred_slippage_bps": signal.preferred_slippage_bps,
            "preferred_deadline_extension": signal.preferred_deadline_extension,
        },
        timestamp=signal.timestamp,
    )


def signal_from_message(message: AgentMessage) -> ReadinessSignal:
    """
    Rebuild a readiness signal from a coordination message

    Raises:
        ValueError: if the message is not a readiness message for a pool,
            or pydantic.ValidationError if its payload values do not validate
    """
    if message.topic != MessageTopic.COORDINATION_REQUEST:
        raise ValueError(f"Not a coordination message: {message.topic.value}")
    if not message.pool_id:
        raise ValueError(f"Coordination message {message.message_id} has no pool id")

    payload = message.payload
    return ReadinessSignal(
        agent_id=message.sender,
        pool_id=message.pool_id,
        ready=bool(payload.get("ready", True)),
        pending_commitments=payload.get("pending_commitments", 0),
        preferred_slippage_bps=payload.get("preferred_slippage_bps"),
        preferred_deadline_extension=payload.get("preferred_deadline_extension"),
        timestamp=message.timestamp,
    )
