"""
auth/service.py -- Composition root for the auth services.

AuthService wires one store, mailer, audit sink, settings object and clock
into every component, so they all agree on the same collaborators. The API
lifespan builds one and stores it on app.state.auth; tests build their own
with fakes.
"""

from __future__ import annotations

from auth.accounts import AccountService
from auth.password_reset import PasswordResetFlow
from auth.ports import AuditSink, Clock, CredentialStore, Mailer
from auth.registration import RegistrationService
from auth.rotation import RefreshRotation
from auth.sessions import SessionIssuer
from core.config import Settings, get_settings


class AuthService:
    """Facade over registration, sessions, rotation, password reset and accounts."""

    def __init__(
        self,
        store: CredentialStore,
        mailer: Mailer,
        audit: AuditSink,
        settings: Settings | None = None,
        clock: Clock | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.store = store
        self.settings = settings
        self.sessions = SessionIssuer(store, audit, settings, clock)
        self.rotation = RefreshRotation(store, audit, self.sessions, settings, clock)
        self.registration = RegistrationService(store, mailer, audit, settings, clock)
        self.password_reset = PasswordResetFlow(store, mailer, audit, self.rotation, settings, clock)
        self.accounts = AccountService(store, audit, self.rotation, settings)
