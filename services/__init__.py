from .queue import SessionQueue
from .review import Card, Presenter, ReviewSession, SessionState, SessionStateError
from .scheduler import Rating, SchedulingPolicy, SkipPolicy, SM2Policy, get_policy
