from pullup_trainer.models.training_session import SessionStatus, TrainingSession
from pullup_trainer.models.generation import Generation, GenerationStatus
from pullup_trainer.models.generation_error_log import GenerationErrorLog
from pullup_trainer.models.event import Event

__all__ = [
    "TrainingSession",
    "SessionStatus",
    "Generation",
    "GenerationStatus",
    "GenerationErrorLog",
    "Event",
]
