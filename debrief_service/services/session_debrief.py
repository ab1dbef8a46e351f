"""
Session debrief generation and versioning.

Orchestrates context gathering, the model call, output validation and the
versioned write for one session (``generate_and_persist``) or many
(``bulk_generate_and_persist``). Each session has at most one active debrief;
every successful generation inserts version ``max + 1`` and supersedes the
previous active row in the same transactional unit.
"""
from __future__ import annotations

import asyncio
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Sequence

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from debrief_service.config.settings import Settings, get_settings
from debrief_service.core.exceptions import (
    ConfigurationError,
    DomainError,
    MalformedOutputError,
    RateLimitedError,
    SchemaValidationError,
    StorageError,
    ValidationError,
)
from debrief_service.core.logging import get_logger
from debrief_service.core.transactions import run_in_transaction, savepoint
from debrief_service.llm import LLMConfig, LLMProvider, PromptBuilder, get_llm_provider
from debrief_service.llm.prompts import DebriefPrompt, build_session_debrief_prompt
from debrief_service.models.enums import DebriefTrigger
from debrief_service.models.session_debrief import SessionDebrief
from debrief_service.repositories.session_debrief_repository import SessionDebriefRepository
from debrief_service.schemas.debrief import DebriefContextPayload, SessionDebriefContent
from debrief_service.services.base import BaseService
from debrief_service.services.debrief_context import gather_session_debrief_context
from debrief_service.services.debrief_errors import (
    GenerationErrorKind,
    classify_generation_error,
    parse_debrief_content,
)

logger = get_logger(__name__)

ContextGatherer = Callable[..., Awaitable[DebriefContextPayload]]
PromptFactory = Callable[[DebriefContextPayload], DebriefPrompt]
ReadSessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

SESSION_LIST_MAX = 25
RECENT_LIST_MAX = 50


@dataclass
class DebriefResult:
    debrief: SessionDebrief
    content: SessionDebriefContent | None = None
    context: DebriefContextPayload | None = None


@dataclass
class BulkDebriefError:
    session_id: int
    error: str
    retryable: bool = False


@dataclass
class BulkDebriefResult:
    debriefs: list[SessionDebrief] = field(default_factory=list)
    errors: list[BulkDebriefError] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)


def _check_limit(limit: int, maximum: int) -> None:
    if not 1 <= limit <= maximum:
        raise ValidationError("limit", f"must be between 1 and {maximum}", {"limit": limit})


def _dump_list(items: list | None) -> list[dict[str, Any]] | None:
    if not items:
        return None
    return [item.model_dump(by_alias=True, exclude_none=True) for item in items]


def _dump_object(item) -> dict[str, Any] | None:
    if item is None:
        return None
    return item.model_dump(by_alias=True, exclude_none=True)


def build_insert_payload(
    user_id: str,
    session_id: int,
    content: SessionDebriefContent,
    *,
    version: int,
    trigger: DebriefTrigger,
    previous: SessionDebrief | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Row values for a new active debrief version.

    Every key in ``SessionDebrief.INSERT_FIELDS`` is always present so that
    payloads can share one multi-row INSERT.
    """
    now = now or datetime.utcnow()

    if previous is not None:
        regeneration_count = previous.regeneration_count or 0
        if trigger is DebriefTrigger.REGENERATE:
            regeneration_count += 1
    else:
        regeneration_count = 1 if trigger is DebriefTrigger.REGENERATE else 0

    metadata = dict(content.metadata or {})
    metadata.update(generatedAt=now.isoformat(), trigger=trigger.value)

    adherence = content.adherence_score
    return {
        "user_id": user_id,
        "session_id": session_id,
        "version": version,
        "parent_debrief_id": previous.id if previous is not None else None,
        "summary": content.summary,
        "pr_highlights": _dump_list(content.pr_highlights),
        "adherence_score": round(adherence, 2) if adherence is not None else None,
        "focus_areas": _dump_list(content.focus_areas),
        "streak_context": _dump_object(content.streak_context),
        "overload_digest": _dump_object(content.overload_digest),
        "debrief_metadata": metadata,
        "is_active": True,
        "regeneration_count": regeneration_count,
        "created_at": now,
        "updated_at": now,
    }


class SessionDebriefService(BaseService):
    """Generates, versions and serves session debriefs for one DB session."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        llm_provider: LLMProvider | None = None,
        context_gatherer: ContextGatherer | None = None,
        prompt_builder: PromptFactory | None = None,
        read_session_factory: ReadSessionFactory | None = None,
        settings: Settings | None = None,
    ):
        super().__init__(session)
        self._settings = settings or get_settings()
        self._llm = llm_provider
        self._gather_context = context_gatherer or gather_session_debrief_context
        self._build_prompt = prompt_builder or build_session_debrief_prompt
        self._read_session_factory = read_session_factory
        self.repository = SessionDebriefRepository(
            session, parameter_limit=self._settings.insert_parameter_limit
        )

    @property
    def llm(self) -> LLMProvider:
        if self._llm is None:
            self._llm = get_llm_provider()
        return self._llm

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def resolve_model(self) -> str:
        model = self._settings.ai_debrief_model or self._settings.ai_gateway_model_health
        if not model:
            raise ConfigurationError(
                "AI debrief model is not configured. Set AI_DEBRIEF_MODEL or AI_GATEWAY_MODEL_HEALTH."
            )
        return model

    async def _generate_text(self, prompt: DebriefPrompt, model: str, **log_context) -> str:
        """Call the model; rate limiting surfaces as ``RateLimitedError``, anything else unchanged."""
        messages = PromptBuilder().system(prompt.system).user(prompt.prompt).build()
        config = LLMConfig(model=model, temperature=self._settings.ai_debrief_temperature)
        try:
            response = await self.llm.chat(messages, config)
        except Exception as exc:
            kind = classify_generation_error(exc)
            logger.warning(
                "session_debrief.ai_call_failed",
                error=str(exc),
                error_type=type(exc).__name__,
                rate_limited=kind is GenerationErrorKind.RATE_LIMITED,
                **log_context,
            )
            if kind is GenerationErrorKind.RATE_LIMITED:
                raise RateLimitedError() from exc
            raise
        return response.content

    def _parse_content(self, raw: str, **log_context) -> SessionDebriefContent:
        try:
            return parse_debrief_content(raw, self._settings.debrief_snippet_length)
        except MalformedOutputError as exc:
            logger.error("session_debrief.invalid_json", snippet=exc.snippet, **log_context)
            raise
        except SchemaValidationError as exc:
            logger.error("session_debrief.invalid_schema", errors=exc.errors, **log_context)
            raise

    async def generate_and_persist(
        self,
        user_id: str,
        session_id: int,
        locale: str | None = None,
        timezone: str | None = None,
        skip_if_active: bool = False,
        trigger: DebriefTrigger | str = DebriefTrigger.AUTO,
        request_id: str | None = None,
    ) -> DebriefResult:
        """Generate one debrief and store it as the session's new active version."""
        trigger = DebriefTrigger(trigger)
        log_context = {"user_id": user_id, "session_id": session_id, "request_id": request_id}

        if skip_if_active:
            existing = await self.repository.get_active(user_id, session_id)
            if existing is not None:
                logger.info("session_debrief.skip_generate", debrief_id=existing.id, **log_context)
                return DebriefResult(debrief=existing)

        context = await self._gather_context(
            self._session, user_id, session_id, locale=locale, timezone=timezone
        )
        prompt = self._build_prompt(context)
        model = self.resolve_model()

        raw = await self._generate_text(prompt, model, **log_context)
        content = self._parse_content(raw, **log_context)

        debrief = await self._persist_single(user_id, session_id, content, trigger, log_context)

        logger.info(
            "session_debrief.generated",
            debrief_id=debrief.id,
            version=debrief.version,
            trigger=trigger.value,
            **log_context,
        )
        return DebriefResult(debrief=debrief, content=content, context=context)

    async def _persist_single(
        self,
        user_id: str,
        session_id: int,
        content: SessionDebriefContent,
        trigger: DebriefTrigger,
        log_context: dict,
    ) -> SessionDebrief:
        async def _write() -> SessionDebrief:
            version = await self.repository.get_next_version(user_id, session_id)
            previous = await self.repository.get_active(user_id, session_id)
            if previous is not None:
                await self.repository.deactivate([previous.id])
            payload = build_insert_payload(
                user_id, session_id, content, version=version, trigger=trigger, previous=previous
            )
            return await self.repository.insert_one(payload)

        attempts = self._settings.debrief_version_conflict_retries + 1
        for attempt in range(1, attempts + 1):
            # Without a wrapping unit the failed attempt cannot be undone
            wrapped = self._settings.supports_nested_transactions or not self._session.in_transaction()
            try:
                return await run_in_transaction(
                    self._session,
                    _write,
                    supports_nested=self._settings.supports_nested_transactions,
                    event="session_debrief.transaction_fallback",
                    **log_context,
                )
            except IntegrityError as exc:
                if attempt == attempts or not wrapped or not self._session.is_active:
                    raise StorageError(
                        "Failed to store session debrief",
                        details={"session_id": session_id, "reason": "version_conflict"},
                    ) from exc
                logger.warning("session_debrief.version_conflict_retry", attempt=attempt, **log_context)
            except SQLAlchemyError as exc:
                raise StorageError(
                    "Failed to store session debrief", details={"session_id": session_id}
                ) from exc

    # ------------------------------------------------------------------
    # Bulk generation
    # ------------------------------------------------------------------

    def _open_read_session(self) -> AbstractAsyncContextManager[AsyncSession]:
        if self._read_session_factory is None:
            self._read_session_factory = async_sessionmaker(
                bind=self._session.bind, expire_on_commit=False
            )
        return self._read_session_factory()

    async def _gather_isolated(
        self,
        user_id: str,
        session_id: int,
        locale: str | None,
        timezone: str | None,
    ) -> DebriefContextPayload:
        async with self._open_read_session() as read_session:
            return await self._gather_context(
                read_session, user_id, session_id, locale=locale, timezone=timezone
            )

    async def bulk_generate_and_persist(
        self,
        user_id: str,
        session_ids: Sequence[int],
        locale: str | None = None,
        timezone: str | None = None,
        skip_if_active: bool = False,
        trigger: DebriefTrigger | str = DebriefTrigger.AUTO,
        request_id: str | None = None,
    ) -> BulkDebriefResult:
        """
        Generate debriefs for several sessions.

        Per-session failures are collected in ``errors`` instead of aborting
        the batch. Context gathering runs concurrently; model calls run one
        at a time; all successful outputs are written with grouped
        statements.
        """
        result = BulkDebriefResult()
        ids = list(dict.fromkeys(session_ids))
        if not ids:
            return result

        trigger = DebriefTrigger(trigger)
        log_context = {"user_id": user_id, "request_id": request_id}

        outcomes = await asyncio.gather(
            *(self._gather_isolated(user_id, sid, locale, timezone) for sid in ids),
            return_exceptions=True,
        )
        contexts: dict[int, DebriefContextPayload] = {}
        for session_id, outcome in zip(ids, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                logger.warning(
                    "session_debrief.bulk_context_failed",
                    session_id=session_id,
                    error=str(outcome),
                    **log_context,
                )
                result.errors.append(
                    BulkDebriefError(session_id, f"Failed to gather context: {outcome}")
                )
            else:
                contexts[session_id] = outcome

        if not contexts:
            self._log_bulk_result(result, ids, **log_context)
            return result

        if skip_if_active:
            active = await self.repository.get_active_for_sessions(user_id, list(contexts))
            result.skipped = [sid for sid in contexts if sid in active]
            for session_id in result.skipped:
                contexts.pop(session_id)
            if result.skipped:
                logger.info(
                    "session_debrief.bulk_skip_generate", session_ids=result.skipped, **log_context
                )

        if not contexts:
            self._log_bulk_result(result, ids, **log_context)
            return result

        try:
            model = self.resolve_model()
        except ConfigurationError as exc:
            result.errors.extend(BulkDebriefError(sid, exc.message) for sid in contexts)
            logger.error("session_debrief.bulk_generation_failed", error=exc.message, **log_context)
            self._log_bulk_result(result, ids, **log_context)
            return result

        generated: dict[int, SessionDebriefContent] = {}
        for session_id, context in contexts.items():
            item_context = {**log_context, "session_id": session_id}
            try:
                prompt = self._build_prompt(context)
                raw = await self._generate_text(prompt, model, **item_context)
                generated[session_id] = self._parse_content(raw, **item_context)
            except Exception as exc:
                message = exc.message if isinstance(exc, DomainError) else str(exc)
                retryable = isinstance(exc, DomainError) and exc.retryable
                logger.warning(
                    "session_debrief.bulk_generation_failed",
                    error=message,
                    retryable=retryable,
                    **item_context,
                )
                result.errors.append(BulkDebriefError(session_id, message, retryable))

        if generated:
            try:
                debriefs, insert_errors = await self._persist_bulk(
                    user_id, generated, trigger, log_context
                )
            except SQLAlchemyError as exc:
                raise StorageError(
                    "Failed to store session debriefs", details={"session_ids": list(generated)}
                ) from exc
            result.debriefs.extend(debriefs)
            result.errors.extend(insert_errors)

        self._log_bulk_result(result, ids, **log_context)
        return result

    async def _persist_bulk(
        self,
        user_id: str,
        generated: dict[int, SessionDebriefContent],
        trigger: DebriefTrigger,
        log_context: dict,
    ) -> tuple[list[SessionDebrief], list[BulkDebriefError]]:
        nested = self._settings.supports_nested_transactions
        now = datetime.utcnow()

        # Read inside the write step; a version may have landed during generation
        max_versions = await self.repository.get_max_versions(user_id, list(generated))
        superseded = await self.repository.get_active_for_sessions(user_id, list(generated))
        await self.repository.deactivate(debrief.id for debrief in superseded.values())

        payloads = [
            build_insert_payload(
                user_id,
                session_id,
                content,
                version=max_versions[session_id] + 1,
                trigger=trigger,
                previous=superseded.get(session_id),
                now=now,
            )
            for session_id, content in generated.items()
        ]

        # Without a savepoint, chunks that landed before a failure stay written
        isolated = nested and self._session.in_transaction()
        landed: list[SessionDebrief] = []
        try:
            async with savepoint(self._session, enabled=nested):
                if len(payloads) > self._settings.debrief_bulk_chunk_threshold:
                    await self.repository.insert_chunked(payloads, inserted=landed)
                else:
                    landed.extend(await self.repository.insert_many(payloads))
            return landed, []
        except SQLAlchemyError as exc:
            if isolated:
                landed = []
            logger.warning(
                "session_debrief.bulk_fallback_to_individual",
                error=str(exc),
                count=len(payloads),
                landed=len(landed),
                **log_context,
            )

        stored = {debrief.session_id for debrief in landed}
        debriefs: list[SessionDebrief] = list(landed)
        errors: list[BulkDebriefError] = []
        restore: list[int] = []
        for payload in payloads:
            session_id = payload["session_id"]
            if session_id in stored:
                continue
            try:
                # Single-row statement: a failure leaves the session usable for the rest
                async with savepoint(self._session, enabled=nested):
                    (debrief,) = await self.repository.insert_many([payload])
                debriefs.append(debrief)
            except SQLAlchemyError as exc:
                logger.error(
                    "session_debrief.bulk_insert_failed",
                    session_id=session_id,
                    error=str(exc),
                    **log_context,
                )
                errors.append(BulkDebriefError(session_id, f"Failed to store debrief: {exc}"))
                if session_id in superseded:
                    restore.append(superseded[session_id].id)

        # A session whose new version never landed keeps its old one active
        await self.repository.reactivate(restore)
        return debriefs, errors

    def _log_bulk_result(self, result: BulkDebriefResult, requested: list[int], **log_context) -> None:
        logger.info(
            "session_debrief.bulk_generated",
            requested=len(requested),
            generated=len(result.debriefs),
            failed=len(result.errors),
            skipped=len(result.skipped),
            **log_context,
        )

    # ------------------------------------------------------------------
    # Reader interaction
    # ------------------------------------------------------------------

    async def list_by_session(
        self, user_id: str, session_id: int, include_inactive: bool = False, limit: int = 10
    ) -> list[SessionDebrief]:
        _check_limit(limit, SESSION_LIST_MAX)
        return await self.repository.list_by_session(user_id, session_id, include_inactive, limit)

    async def list_recent(self, user_id: str, limit: int = 10) -> list[SessionDebrief]:
        _check_limit(limit, RECENT_LIST_MAX)
        return await self.repository.list_recent(user_id, limit)

    async def _get_target(self, user_id: str, session_id: int, debrief_id: int | None) -> SessionDebrief:
        """The explicitly requested debrief, or the session's active one."""
        if debrief_id is not None:
            debrief = await self.repository.get_for_user(debrief_id, user_id, session_id)
        else:
            debrief = await self.repository.get_active(user_id, session_id)
        return self._require(
            "session_debrief", debrief, {"session_id": session_id, "debrief_id": debrief_id}
        )

    async def mark_viewed(self, user_id: str, session_id: int, debrief_id: int | None = None) -> SessionDebrief:
        target = await self._get_target(user_id, session_id, debrief_id)
        updated = await self.repository.update_fields(target, viewed_at=datetime.utcnow())
        logger.info("session_debrief.viewed", user_id=user_id, session_id=session_id, debrief_id=target.id)
        return updated

    async def toggle_pinned(self, user_id: str, session_id: int, debrief_id: int | None = None) -> SessionDebrief:
        target = await self._get_target(user_id, session_id, debrief_id)
        pinned = target.pinned_at is None
        updated = await self.repository.update_fields(
            target, pinned_at=datetime.utcnow() if pinned else None
        )
        logger.info(
            "session_debrief.toggle_pin",
            user_id=user_id,
            session_id=session_id,
            debrief_id=target.id,
            pinned=pinned,
        )
        return updated

    async def dismiss(self, user_id: str, session_id: int, debrief_id: int | None = None) -> SessionDebrief:
        target = await self._get_target(user_id, session_id, debrief_id)
        updated = await self.repository.update_fields(
            target, dismissed_at=datetime.utcnow(), is_active=False
        )
        logger.info("session_debrief.dismissed", user_id=user_id, session_id=session_id, debrief_id=target.id)
        return updated

    async def update_metadata(
        self,
        user_id: str,
        session_id: int,
        metadata: dict[str, Any],
        debrief_id: int | None = None,
    ) -> SessionDebrief:
        """Replace the debrief's metadata object."""
        target = await self._get_target(user_id, session_id, debrief_id)
        updated = await self.repository.update_fields(target, debrief_metadata=dict(metadata))
        logger.info(
            "session_debrief.metadata_updated",
            user_id=user_id,
            session_id=session_id,
            debrief_id=target.id,
        )
        return updated


async def generate_and_persist_debrief(
    db: AsyncSession,
    *,
    user_id: str,
    session_id: int,
    llm_provider: LLMProvider | None = None,
    context_gatherer: ContextGatherer | None = None,
    prompt_builder: PromptFactory | None = None,
    settings: Settings | None = None,
    **options,
) -> DebriefResult:
    service = SessionDebriefService(
        db,
        llm_provider=llm_provider,
        context_gatherer=context_gatherer,
        prompt_builder=prompt_builder,
        settings=settings,
    )
    return await service.generate_and_persist(user_id, session_id, **options)


async def bulk_generate_and_persist_debriefs(
    db: AsyncSession,
    *,
    user_id: str,
    session_ids: Sequence[int],
    llm_provider: LLMProvider | None = None,
    context_gatherer: ContextGatherer | None = None,
    prompt_builder: PromptFactory | None = None,
    read_session_factory: ReadSessionFactory | None = None,
    settings: Settings | None = None,
    **options,
) -> BulkDebriefResult:
    service = SessionDebriefService(
        db,
        llm_provider=llm_provider,
        context_gatherer=context_gatherer,
        prompt_builder=prompt_builder,
        read_session_factory=read_session_factory,
        settings=settings,
    )
    return await service.bulk_generate_and_persist(user_id, session_ids, **options)
