from .accounts import AccountCredentials, AccountStore
from .connections import ConnectionStore
from .replies import ReplyStore
from .reviews import ReviewPayload, ReviewStore

__all__ = [
    "AccountCredentials",
    "AccountStore",
    "ConnectionStore",
    "ReplyStore",
    "ReviewPayload",
    "ReviewStore",
]
