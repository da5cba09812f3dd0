from .core import get_async_session, get_engine, init_models
from .models import Base, GoogleAccount, LocationConnection, ReplyGeneration, ReplyStatus, Review, ReviewReply

__all__ = [
    "Base",
    "GoogleAccount",
    "LocationConnection",
    "ReplyGeneration",
    "ReplyStatus",
    "Review",
    "ReviewReply",
    "get_async_session",
    "get_engine",
    "init_models",
]
