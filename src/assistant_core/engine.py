"""Assistant engine: one conversation, its archive, and the edits its replies request."""

from __future__ import annotations

import base64
import logging
from collections.abc import Callable
from pathlib import Path

from assistant_core.applier import EditApplier, FileSystemBackend, LocalFileSystem
from assistant_core.backend import HttpModelBackend, ModelBackend
from assistant_core.channel import EventChannel
from assistant_core.config import ConfigManager
from assistant_core.controller import ExchangeInFlightError, StreamController
from assistant_core.credentials import CredentialError, CredentialStore
from assistant_core.edit_protocol import parse_segments
from assistant_core.indexer import ProjectIndexer
from assistant_core.models import (
    EditResult,
    ExchangeOutcome,
    IndexResult,
    Message,
    Session,
    StreamState,
)
from assistant_core.providers import (
    PROVIDERS,
    GenerateRequest,
    ProviderConfig,
    build_provider,
)
from assistant_core.session import StatePersistence, restore, snapshot

logger = logging.getLogger(__name__)

BUSY_NOTICE = "A reply is still streaming. Cancel it before sending another message."
APPLYING_NOTICE = "Edits from the last reply are still being written."
EMPTY_NOTICE = "Type a message first."


class AssistantEngine:
    """Owns the draft, archive, stream controller, edit applier and persistence.

    All state lives on the instance, so several engines can coexist.
    """

    def __init__(
        self,
        config: ConfigManager,
        *,
        backend: ModelBackend | None = None,
        fs: FileSystemBackend | None = None,
        persistence: StatePersistence | None = None,
        credentials: CredentialStore | None = None,
        channel: EventChannel | None = None,
        indexer: ProjectIndexer | None = None,
        edit_status_callback: Callable[[EditResult], None] | None = None,
    ) -> None:
        settings = config.settings
        self._config = config
        self._credentials = credentials or CredentialStore()
        self.channel = channel or EventChannel()

        self._owns_backend = backend is None
        self.backend: ModelBackend = backend or HttpModelBackend(
            timeout=settings.request_timeout,
            connect_timeout=settings.connect_timeout,
            streaming=settings.streaming,
        )

        self.persistence = (
            persistence if persistence is not None
            else StatePersistence.from_config(config)
        )
        self.draft, self.archive = restore(
            self.persistence.load(), title_max_length=settings.title_max_length
        )

        self.indexer = indexer or ProjectIndexer()
        self.applier = EditApplier(
            fs or LocalFileSystem(),
            root_provider=lambda: self.indexer.root,
            blocked_patterns=settings.blocked_write_patterns,
            status_callback=edit_status_callback,
        )
        self.controller = StreamController(
            self.draft, self.backend, self.channel, self.build_request
        )

        self._provider_name = settings.provider
        self._models = dict(settings.models)
        self._max_tokens = settings.max_tokens
        self._applying = False

    # --- Provider selection ---

    @property
    def provider_name(self) -> str:
        return self._provider_name

    @property
    def max_tokens(self) -> int | None:
        return self._max_tokens

    def set_provider(self, name: str) -> None:
        if name not in PROVIDERS:
            raise ValueError(
                f"Unknown provider '{name}'. Choose one of: {', '.join(sorted(PROVIDERS))}"
            )
        self._provider_name = name

    def set_model(self, model: str) -> None:
        self._models[self._provider_name] = model.strip()

    def set_max_tokens(self, max_tokens: int | None) -> None:
        if max_tokens is not None and max_tokens <= 0:
            raise ValueError("max_tokens must be a positive integer")
        self._max_tokens = max_tokens

    def current_provider(self) -> ProviderConfig:
        name = self._provider_name
        return build_provider(
            name,
            api_key=self._credentials.get_key(name),
            model=self._models.get(name) or None,
            local_url=self._config.settings.local_url,
        )

    def build_request(self, text: str, image: str | None) -> GenerateRequest:
        settings = self._config.settings
        return GenerateRequest(
            provider=self.current_provider(),
            prompt=text,
            system_prompt=self._config.get_system_prompt(),
            image_base64=image,
            context_files=self.indexer.context_blocks(
                settings.context_max_files, settings.context_max_chars
            ),
            max_tokens=self._max_tokens,
        )

    # --- Exchanges ---

    @property
    def state(self) -> StreamState:
        return self.controller.state

    @property
    def busy(self) -> bool:
        return self._busy_notice() is not None

    def _busy_notice(self) -> str | None:
        if self.controller.in_flight:
            return BUSY_NOTICE
        if self._applying:
            return APPLYING_NOTICE
        return None

    @property
    def messages(self) -> list[Message]:
        return list(self.draft.messages)

    def validate(self, text: str) -> str | None:
        """Return a notice when ``text`` cannot be sent right now, else None."""
        busy = self._busy_notice()
        if busy:
            return busy
        if not text.strip():
            return EMPTY_NOTICE
        try:
            provider = self.current_provider()
        except (ValueError, CredentialError) as e:
            return str(e)
        return provider.missing_configuration()

    async def submit(
        self, text: str, *, on_token: Callable[[str], None] | None = None
    ) -> ExchangeOutcome:
        """Send ``text`` and apply any edits the completed reply requests.

        User-input problems are rejected up front with a notice; nothing is
        appended to the conversation in that case.
        """
        notice = self.validate(text)
        if notice:
            logger.info("Rejected submit: %s", notice)
            return ExchangeOutcome(status=ExchangeOutcome.REJECTED, notice=notice)

        outcome = await self.controller.send(text, on_token=on_token)
        if outcome.status == ExchangeOutcome.COMPLETED and outcome.message:
            # Stay busy until every edit settles
            self._applying = True
            try:
                outcome.edits = await self.applier.apply(
                    parse_segments(outcome.message.text)
                )
            finally:
                self._applying = False
        self.save()
        return outcome

    def cancel(self) -> None:
        """Cancel the in-flight exchange, if any."""
        self.controller.cancel()

    # --- Attachments and project context ---

    def attach_image(self, path: str | Path) -> None:
        """Attach an image file to the next exchange."""
        data = Path(path).expanduser().read_bytes()
        self.draft.attachment = base64.b64encode(data).decode("ascii")

    def attach_image_data(self, image_base64: str | None) -> None:
        self.draft.attachment = image_base64 or None

    async def index_project(self, path: str | Path) -> IndexResult:
        return await self.indexer.index_directory(path)

    def clear_project(self) -> None:
        self.indexer.clear()

    # --- Archive ---

    def _ensure_idle(self) -> None:
        busy = self._busy_notice()
        if busy:
            raise ExchangeInFlightError(busy)

    def archive_draft(self, title: str | None = None) -> Session | None:
        self._ensure_idle()
        session = self.archive.archive(title)
        if session is not None:
            self.save()
        return session

    def load_session(self, session_id: str) -> Session:
        self._ensure_idle()
        session = self.archive.load(session_id)
        self.save()
        return session

    def delete_session(self, session_id: str) -> Session:
        session = self.archive.delete(session_id)
        self.save()
        return session

    def rename_session(self, session_id: str, title: str) -> Session:
        session = self.archive.rename(session_id, title)
        self.save()
        return session

    def new_chat(self) -> Session | None:
        """Archive the current draft (if any) and start an empty one."""
        self._ensure_idle()
        session = self.archive.archive()
        self.archive.clear_draft()
        self.save()
        return session

    def search_sessions(self, query: str = "") -> list[Session]:
        return self.archive.search(query)

    # --- Persistence ---

    def save(self) -> bool:
        return self.persistence.save(snapshot(self.draft, self.archive))

    async def aclose(self) -> None:
        await self.controller.drain()
        self.save()
        if self._owns_backend and isinstance(self.backend, HttpModelBackend):
            await self.backend.aclose()
        self.persistence.close()
