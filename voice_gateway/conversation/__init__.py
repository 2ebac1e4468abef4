from voice_gateway.conversation.client_channel import ClientChannel, ClientDisconnected
from voice_gateway.conversation.connection_registry import ConnectionRegistry, SessionHooks
from voice_gateway.conversation.dialogue_engine import DialogueEngine
from voice_gateway.conversation.pause_coordinator import PauseCoordinator, ResumeOutcome
from voice_gateway.conversation.supervision import CorrectionHandler, SupervisionChannel
from voice_gateway.conversation.transcript_store import TranscriptStore
from voice_gateway.conversation.turn_accumulator import TurnAccumulator

__all__ = [
    "ClientChannel",
    "ClientDisconnected",
    "ConnectionRegistry",
    "SessionHooks",
    "DialogueEngine",
    "PauseCoordinator",
    "ResumeOutcome",
    "CorrectionHandler",
    "SupervisionChannel",
    "TranscriptStore",
    "TurnAccumulator",
]
