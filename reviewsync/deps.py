"""Process-wide collaborators, built once per app and read from ``app.state``."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from .integrations.google.client import GoogleApiClient
from .integrations.google.oauth import GoogleOAuth
from .integrations.google.sync import ReviewSyncEngine
from .integrations.google.token_manager import TokenManager
from .replies.generation import OpenAIReplyGenerator, ReplyGenerator
from .replies.workflow import ReplyWorkflow
from .stores import AccountStore, ConnectionStore


@dataclass
class Services:
    accounts: AccountStore
    connections: ConnectionStore
    oauth: GoogleOAuth
    tokens: TokenManager
    client: GoogleApiClient
    sync: ReviewSyncEngine
    workflow: ReplyWorkflow


def build_services(generator: ReplyGenerator | None = None, client: GoogleApiClient | None = None) -> Services:
    accounts = AccountStore()
    connections = ConnectionStore()
    oauth = GoogleOAuth()
    tokens = client.tokens if client is not None else TokenManager(accounts, oauth)
    client = client or GoogleApiClient(tokens)
    return Services(
        accounts=accounts,
        connections=connections,
        oauth=oauth,
        tokens=tokens,
        client=client,
        sync=ReviewSyncEngine(client, connections),
        workflow=ReplyWorkflow(client, generator or OpenAIReplyGenerator(), connections=connections),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
