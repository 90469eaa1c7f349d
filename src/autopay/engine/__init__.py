"""Record lifecycle engine — verification state machine and orchestration.

The orchestrator lives in autopay.engine.orchestrator and is imported
from there directly.
"""

from autopay.engine.state_machine import VerificationPath, VerificationStateMachine

__all__ = ["VerificationPath", "VerificationStateMachine"]
