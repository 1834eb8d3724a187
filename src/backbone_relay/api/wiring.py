"""Production object graph: Postgres repositories plus Twilio/OpenAI/GCS clients.

Objects are built once per app on first use and kept on `app.state`, so the
config cache and SDK clients live for the process lifetime. Tests put fakes on
`app.state` through `create_app(relay=..., dispatcher=...)` instead.
"""

from __future__ import annotations

import threading

from fastapi import FastAPI, Request

from backbone_relay.domain.fallback import FallbackResponder
from backbone_relay.domain.followups import FollowUpQueue
from backbone_relay.domain.identity import IdentityResolver
from backbone_relay.domain.outbound import OutboundDispatcher
from backbone_relay.domain.presence import PresenceTracker
from backbone_relay.domain.relay import RelayOrchestrator
from backbone_relay.infra.relay_config import CachedConfigProvider
from backbone_relay.infra.repositories.messages_repository import PgMessageStore
from backbone_relay.infra.repositories.pending_tasks_repository import PgPendingTaskWriter
from backbone_relay.infra.repositories.presence_repository import PgPresenceReader
from backbone_relay.infra.repositories.user_context_repository import PgUserContextReader
from backbone_relay.infra.repositories.users_repository import PgUserRepository
from backbone_relay.infra.settings import RelaySettings
from backbone_relay.llm.openai_client import OpenAIFallbackClient
from backbone_relay.media.gcs_store import GcsMediaStore
from backbone_relay.media.ingest import MediaIngestor
from backbone_relay.whatsapp.twilio_client import TwilioClient

_build_lock = threading.Lock()


def build_relay(settings: RelaySettings, config: CachedConfigProvider) -> RelayOrchestrator:
    carrier = TwilioClient()
    messages = PgMessageStore()
    return RelayOrchestrator(
        identities=IdentityResolver(PgUserRepository()),
        messages=messages,
        presence=PresenceTracker(PgPresenceReader(), window=settings.liveness_window),
        media=MediaIngestor(
            carrier,
            GcsMediaStore(settings.media_bucket, url_ttl=settings.media_url_ttl),
        ),
        responder=FallbackResponder(
            OpenAIFallbackClient(config, model=settings.fallback_model),
            PgUserContextReader(),
            settings,
        ),
        followups=FollowUpQueue(PgPendingTaskWriter()),
        carrier=carrier,
        config=config,
        settings=settings,
    )


def build_dispatcher(config: CachedConfigProvider) -> OutboundDispatcher:
    return OutboundDispatcher(
        messages=PgMessageStore(),
        users=PgUserRepository(),
        carrier=TwilioClient(),
        config=config,
    )


def _config(app: FastAPI) -> CachedConfigProvider:
    if getattr(app.state, "config", None) is None:
        app.state.config = CachedConfigProvider()
    return app.state.config


def _settings(app: FastAPI) -> RelaySettings:
    if getattr(app.state, "settings", None) is None:
        app.state.settings = RelaySettings.from_env()
    return app.state.settings


def get_relay(request: Request) -> RelayOrchestrator:
    app = request.app
    with _build_lock:
        if getattr(app.state, "relay", None) is None:
            app.state.relay = build_relay(_settings(app), _config(app))
        return app.state.relay


def get_dispatcher(request: Request) -> OutboundDispatcher:
    app = request.app
    with _build_lock:
        if getattr(app.state, "dispatcher", None) is None:
            app.state.dispatcher = build_dispatcher(_config(app))
        return app.state.dispatcher


def get_settings(request: Request) -> RelaySettings:
    """Settings shared by the relay and the routes of one app."""
    with _build_lock:
        return _settings(request.app)
