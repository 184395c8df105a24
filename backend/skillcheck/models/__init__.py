from .assessment import Assessment, Candidate, IntegrityEvent, Question, Response

__all__ = [
    "Assessment",
    "Candidate",
    "IntegrityEvent",
    "Question",
    "Response",
]
