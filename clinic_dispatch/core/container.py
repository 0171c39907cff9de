"""
Dependency Injection Container

Wires the messaging domain: ledger and appointment store over one session
factory, the channel selected once per process, services, use cases and
the three schedulers.
"""

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from clinic_dispatch.config.settings import Settings, get_settings
from clinic_dispatch.domains.messaging.application.ports import (
    IAppointmentStore,
    IMessageLedger,
    IMessagingChannel,
)
from clinic_dispatch.domains.messaging.application.services import (
    IntentClassifier,
    SessionWindowCalculator,
    SignatureVerifier,
    TemplateBuilder,
)
from clinic_dispatch.domains.messaging.application.use_cases import (
    ListConversationsUseCase,
    ProcessWebhookUseCase,
    SendOperatorReplyUseCase,
)
from clinic_dispatch.domains.messaging.domain import MessageKind
from clinic_dispatch.domains.messaging.infrastructure.activity_log import WebhookActivityLog
from clinic_dispatch.domains.messaging.infrastructure.channel import create_channel
from clinic_dispatch.domains.messaging.infrastructure.persistence import SqlAppointmentStore, SqlMessageLedger
from clinic_dispatch.domains.messaging.infrastructure.scheduler import (
    DispatchScheduler,
    ReminderScheduler,
    RetryScheduler,
    SingleFlightScheduler,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


class DependencyContainer:
    """
    Centralized container for the application's dependencies.

    Long-lived components (ledger, store, channel, schedulers, activity log)
    are created on first use and reused. Use cases are cheap and created per
    call.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        session_factory: "async_sessionmaker[AsyncSession] | None" = None,
        channel: IMessagingChannel | None = None,
    ):
        self.settings = settings or get_settings()
        self._session_factory = session_factory
        self._channel = channel

        self._ledger: IMessageLedger | None = None
        self._store: IAppointmentStore | None = None
        self._templates: TemplateBuilder | None = None
        self._classifier: IntentClassifier | None = None
        self._signature_verifier: SignatureVerifier | None = None
        self._activity_log: WebhookActivityLog | None = None
        self._schedulers: dict[str, SingleFlightScheduler] | None = None

    # ============================================================
    # INFRASTRUCTURE
    # ============================================================

    @property
    def session_factory(self) -> "async_sessionmaker[AsyncSession]":
        if self._session_factory is None:
            from clinic_dispatch.database.async_db import AsyncSessionLocal

            self._session_factory = AsyncSessionLocal
        return self._session_factory

    def get_ledger(self) -> IMessageLedger:
        if self._ledger is None:
            self._ledger = SqlMessageLedger(self.session_factory)
        return self._ledger

    def get_appointment_store(self) -> IAppointmentStore:
        if self._store is None:
            self._store = SqlAppointmentStore(self.session_factory)
        return self._store

    def get_channel(self) -> IMessagingChannel:
        if self._channel is None:
            self._channel = create_channel(self.settings)
        return self._channel

    def get_activity_log(self) -> WebhookActivityLog:
        if self._activity_log is None:
            self._activity_log = WebhookActivityLog()
        return self._activity_log

    # ============================================================
    # SERVICES
    # ============================================================

    def get_template_builder(self) -> TemplateBuilder:
        if self._templates is None:
            self._templates = TemplateBuilder(
                timezone_name=self.settings.CLINIC_TIMEZONE,
                contact_phone=self.settings.CLINIC_CONTACT_PHONE,
            )
        return self._templates

    def get_intent_classifier(self) -> IntentClassifier:
        if self._classifier is None:
            self._classifier = IntentClassifier.default(
                confirm_keywords=self.settings.CONFIRM_KEYWORDS,
                cancel_keywords=self.settings.CANCEL_KEYWORDS,
            )
        return self._classifier

    def get_signature_verifier(self) -> SignatureVerifier:
        if self._signature_verifier is None:
            self._signature_verifier = SignatureVerifier(
                secret=self.settings.WHATSAPP_WEBHOOK_SECRET,
                require_signature=self.settings.WEBHOOK_REQUIRE_SIGNATURE,
            )
        return self._signature_verifier

    def get_session_window(self) -> SessionWindowCalculator:
        return SessionWindowCalculator(
            self.get_ledger(),
            window=timedelta(hours=self.settings.SESSION_WINDOW_HOURS),
        )

    # ============================================================
    # USE CASES
    # ============================================================

    def create_process_webhook_use_case(self) -> ProcessWebhookUseCase:
        return ProcessWebhookUseCase(
            ledger=self.get_ledger(),
            store=self.get_appointment_store(),
            channel=self.get_channel(),
            classifier=self.get_intent_classifier(),
            templates=self.get_template_builder(),
        )

    def create_send_operator_reply_use_case(self) -> SendOperatorReplyUseCase:
        return SendOperatorReplyUseCase(
            ledger=self.get_ledger(),
            channel=self.get_channel(),
            session_window=self.get_session_window(),
        )

    def create_list_conversations_use_case(self) -> ListConversationsUseCase:
        return ListConversationsUseCase(ledger=self.get_ledger(), session_window=self.get_session_window())

    # ============================================================
    # SCHEDULERS
    # ============================================================

    def get_schedulers(self) -> dict[str, SingleFlightScheduler]:
        if self._schedulers is None:
            self._schedulers = self._build_schedulers()
        return self._schedulers

    def get_scheduler(self, name: str) -> SingleFlightScheduler | None:
        return self.get_schedulers().get(name)

    def _build_schedulers(self) -> dict[str, SingleFlightScheduler]:
        s = self.settings
        common = {
            "ledger": self.get_ledger(),
            "store": self.get_appointment_store(),
            "channel": self.get_channel(),
            "templates": self.get_template_builder(),
            "language_code": s.DEFAULT_TEMPLATE_LOCALE,
            "timezone_name": s.CLINIC_TIMEZONE,
            "db_timeout_seconds": s.DB_QUERY_TIMEOUT_SECONDS,
            "send_interval_seconds": s.DISPATCH_SEND_INTERVAL_SECONDS,
        }

        dispatch = DispatchScheduler(
            template_name=s.DEFAULT_CONFIRM_TEMPLATE_NAME,
            lead_days=s.DISPATCH_LEAD_DAYS,
            batch_size=s.DISPATCH_BATCH_SIZE,
            text_fallback=s.DISPATCH_TEXT_FALLBACK,
            session_window=self.get_session_window(),
            interval_seconds=s.DISPATCH_INTERVAL_SECONDS,
            enabled=s.DISPATCH_ENABLED,
            **common,
        )
        reminder = ReminderScheduler(
            template_name=s.REMINDER_TEMPLATE_NAME,
            lead_days=s.REMINDER_LEAD_DAYS,
            batch_size=s.REMINDER_BATCH_SIZE,
            lookback_minutes=s.REMINDER_LOOKBACK_MINUTES,
            require_confirmed=s.REMINDER_REQUIRE_CONFIRMED,
            interval_seconds=s.REMINDER_INTERVAL_SECONDS,
            enabled=s.REMINDER_ENABLED,
            **common,
        )
        retry = RetryScheduler(
            template_names={
                MessageKind.TEMPLATE: s.DEFAULT_CONFIRM_TEMPLATE_NAME,
                MessageKind.REMINDER: s.REMINDER_TEMPLATE_NAME,
            },
            batch_size=s.RETRY_BATCH_SIZE,
            max_attempts=s.RETRY_MAX_ATTEMPTS,
            backoff_base_seconds=s.RETRY_BACKOFF_BASE_SECONDS,
            retry_kinds=s.RETRY_KINDS,
            retry_statuses=s.RETRY_STATUSES,
            resend_enabled=s.RETRY_RESEND_ENABLED,
            sync_states=s.RETRY_SYNC_STATES,
            state_batch_size=s.RETRY_STATE_BATCH_SIZE,
            state_lookback_minutes=s.RETRY_STATE_LOOKBACK_MINUTES,
            interval_seconds=s.RETRY_INTERVAL_SECONDS,
            enabled=s.RETRY_ENABLED,
            **common,
        )
        return {scheduler.name: scheduler for scheduler in (dispatch, reminder, retry)}

    async def close(self) -> None:
        """Release the channel's transport."""
        if self._channel is not None:
            await self._channel.close()


# Singleton
_container: DependencyContainer | None = None


def get_container() -> DependencyContainer:
    """Get or create the process-wide container."""
    global _container
    if _container is None:
        _container = DependencyContainer()
        logger.info("DependencyContainer initialized")
    return _container


def reset_container() -> None:
    global _container
    _container = None
