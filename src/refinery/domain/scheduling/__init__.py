# Domain Scheduling Package
from .config import AlgorithmConfig, FailPolicy, LeechAction, NewCardOrder, NewCardPolicy, ReviewPolicy
from .models import CardState, CardStatus, Grade, GradeResult, new_card_state

__all__ = [
    "AlgorithmConfig",
    "NewCardPolicy",
    "FailPolicy",
    "ReviewPolicy",
    "NewCardOrder",
    "LeechAction",
    "CardState",
    "CardStatus",
    "Grade",
    "GradeResult",
    "new_card_state",
]
