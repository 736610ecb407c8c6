from __future__ import annotations

import threading

from eventdesk.config import Settings, get_settings, reset_settings_cache
from eventdesk.logging import get_logger
from eventdesk.service.admin import AdminService
from eventdesk.service.ai import build_ai_responder
from eventdesk.service.audit import AuditService
from eventdesk.service.credentials import CredentialValidator
from eventdesk.service.email import EmailService
from eventdesk.service.events import EventService
from eventdesk.service.helpdesk import HelpDeskService
from eventdesk.service.mfa import MFAChallengeManager
from eventdesk.service.password_reset import PasswordResetFlow
from eventdesk.service.session import SessionService
from eventdesk.service.tokens import TokenIssuer
from eventdesk.storage.memory import MemoryStore

logger = get_logger(__name__)


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        logger.info(
            "runtime_init_started",
            ai_backend=self.settings.ai_backend.value,
            test_mode=self.settings.test_mode,
        )

        self.store = MemoryStore()
        self.email = EmailService.from_settings(self.settings)
        self.audit = AuditService(self.store)
        self.tokens = TokenIssuer(self.settings)
        self.credentials = CredentialValidator(self.store, self.settings)
        self.mfa = MFAChallengeManager(self.store, self.email, self.audit, self.settings)
        self.password_reset = PasswordResetFlow(
            self.store,
            self.tokens,
            self.email,
            self.audit,
            self.settings,
            hash_password=self.credentials.hash_password,
        )
        self.session = SessionService(
            self.store,
            self.tokens,
            self.credentials,
            self.mfa,
            self.password_reset,
            self.audit,
        )
        self.ai = build_ai_responder(self.settings)
        self.helpdesk = HelpDeskService(self.store, self.ai)
        self.events = EventService(self.store, self.audit, self.settings)
        self.admin = AdminService(
            self.store, self.audit, hash_password=self.credentials.hash_password
        )
        logger.info(
            "runtime_init_completed",
            email_configured=self.email.is_configured,
            ai_responder=type(self.ai).__name__,
        )

    async def close(self) -> None:
        close = getattr(self.ai, "close", None)
        if close is not None:
            await close()


runtime: Runtime | None = None
# Thread-safe singleton pattern using a lock
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner.

    Uses double-checked locking:
    - First check without lock (fast path for existing runtime)
    - Second check with lock to prevent race condition during creation
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""

    global runtime

    with _runtime_lock:
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime(settings)
        return runtime
