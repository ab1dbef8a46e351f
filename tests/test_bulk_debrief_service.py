"""Tests for bulk debrief generation: partial failures, skips and grouped writes."""
import pytest
from sqlalchemy.exc import OperationalError
from structlog.testing import capture_logs

from debrief_service.core.exceptions import NotFoundError
from debrief_service.llm import LLMResponse
from debrief_service.services.session_debrief import (
    SessionDebriefService,
    bulk_generate_and_persist_debriefs,
)
from tests.factories import USER_ID, content_json, make_context_payload, make_llm_provider


def _insert_failure() -> OperationalError:
    return OperationalError("INSERT INTO session_debriefs", {}, Exception("too many SQL variables"))


@pytest.fixture
def make_service(async_db_session, settings, context_gatherer, shared_read_session):
    def _make(llm, **overrides):
        options = {
            "llm_provider": llm,
            "context_gatherer": context_gatherer,
            "read_session_factory": shared_read_session,
            "settings": settings,
        }
        options.update(overrides)
        return SessionDebriefService(async_db_session, **options)

    return _make


async def _seed_active(make_service, session_id: int):
    service = make_service(make_llm_provider(content_json(summary=f"Existing debrief for {session_id}")))
    return (await service.generate_and_persist(USER_ID, session_id)).debrief


class TestBulkGeneration:
    @pytest.mark.asyncio
    async def test_empty_input(self, make_service, context_gatherer):
        llm = make_llm_provider()
        service = make_service(llm)

        result = await service.bulk_generate_and_persist(USER_ID, [])

        assert result.debriefs == []
        assert result.errors == []
        context_gatherer.assert_not_awaited()
        llm.chat.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_context_failure_is_isolated(self, make_service, workout_sessions):
        async def gather(db, user_id, session_id, locale=None, timezone=None):
            if session_id == 42:
                raise NotFoundError("workout_session", "Workout session not found")
            return make_context_payload(session_id)

        llm = make_llm_provider(content_json(), content_json())
        service = make_service(llm, context_gatherer=gather)

        with capture_logs() as logs:
            result = await service.bulk_generate_and_persist(USER_ID, [41, 42, 43])

        assert [d.session_id for d in result.debriefs] == [41, 43]
        assert len(result.errors) == 1
        error = result.errors[0]
        assert error.session_id == 42
        assert error.error == "Failed to gather context: Workout session not found"
        assert error.retryable is False
        assert llm.chat.await_count == 2
        assert any(e["event"] == "session_debrief.bulk_context_failed" for e in logs)

    @pytest.mark.asyncio
    async def test_generation_failures_are_collected(self, make_service, workout_sessions):
        llm = make_llm_provider(
            content_json(),
            RuntimeError("Rate limit exceeded"),
            "definitely not json",
        )
        service = make_service(llm)

        result = await service.bulk_generate_and_persist(USER_ID, [41, 42, 43])

        assert [d.session_id for d in result.debriefs] == [41]
        errors = {e.session_id: e for e in result.errors}
        assert errors[42].retryable is True
        assert errors[42].error == "AI generation is temporarily rate limited. Please try again soon."
        assert errors[43].retryable is False
        assert errors[43].error == "Debrief generation failed"

    @pytest.mark.asyncio
    async def test_all_generations_fail(self, make_service, workout_sessions):
        llm = make_llm_provider(RuntimeError("boom"), RuntimeError("boom"))
        service = make_service(llm)

        result = await service.bulk_generate_and_persist(USER_ID, [41, 42])

        assert result.debriefs == []
        assert [e.session_id for e in result.errors] == [41, 42]
        assert await service.repository.list_versions(USER_ID, 41) == []

    @pytest.mark.asyncio
    async def test_duplicate_ids_are_collapsed(self, make_service, context_gatherer, workout_sessions):
        llm = make_llm_provider(content_json(), content_json())
        service = make_service(llm)

        result = await service.bulk_generate_and_persist(USER_ID, [41, 41, 42, 41])

        assert [d.session_id for d in result.debriefs] == [41, 42]
        assert context_gatherer.await_count == 2

    @pytest.mark.asyncio
    async def test_skip_if_active(self, make_service, workout_sessions):
        await _seed_active(make_service, 42)
        llm = make_llm_provider(content_json())
        service = make_service(llm)

        with capture_logs() as logs:
            result = await service.bulk_generate_and_persist(USER_ID, [42, 43], skip_if_active=True)

        assert result.skipped == [42]
        assert [d.session_id for d in result.debriefs] == [43]
        assert result.errors == []
        llm.chat.assert_awaited_once()
        assert any(e["event"] == "session_debrief.bulk_skip_generate" for e in logs)

    @pytest.mark.asyncio
    async def test_supersedes_existing_versions(self, make_service, workout_sessions):
        v1 = await _seed_active(make_service, 42)
        service = make_service(make_llm_provider(content_json(), content_json()))

        result = await service.bulk_generate_and_persist(USER_ID, [42, 43], trigger="regenerate")

        by_session = {d.session_id: d for d in result.debriefs}
        assert by_session[42].version == 2
        assert by_session[42].parent_debrief_id == v1.id
        assert by_session[42].regeneration_count == 1
        assert by_session[43].version == 1
        versions = await service.repository.list_versions(USER_ID, 42)
        assert [v.is_active for v in versions] == [False, True]

    @pytest.mark.asyncio
    async def test_missing_model_fails_every_pending_session(self, make_service, settings, workout_sessions):
        llm = make_llm_provider()
        service = make_service(
            llm,
            settings=settings.model_copy(update={"ai_debrief_model": None, "ai_gateway_model_health": None}),
        )

        result = await service.bulk_generate_and_persist(USER_ID, [41, 42])

        assert result.debriefs == []
        assert [e.session_id for e in result.errors] == [41, 42]
        assert all(not e.retryable for e in result.errors)
        llm.chat.assert_not_awaited()


class TestBulkPersistence:
    @pytest.mark.asyncio
    async def test_small_batch_uses_single_statement(self, make_service, workout_sessions):
        service = make_service(make_llm_provider(*(content_json() for _ in range(3))))
        real_insert_many = service.repository.insert_many
        statements = []

        async def spy_insert_many(payloads):
            statements.append(len(payloads))
            return await real_insert_many(payloads)

        async def no_chunking(payloads, parameter_limit=None):
            raise AssertionError("chunk writer not expected for small batches")

        service.repository.insert_many = spy_insert_many
        service.repository.insert_chunked = no_chunking

        result = await service.bulk_generate_and_persist(USER_ID, [41, 42, 43])

        assert statements == [3]
        assert [d.session_id for d in result.debriefs] == [41, 42, 43]

    @pytest.mark.asyncio
    async def test_large_batch_goes_through_chunk_writer(self, make_service, settings, workout_sessions):
        session_ids = [41, 42, 43, 44, 45, 46]
        service = make_service(
            make_llm_provider(*(content_json() for _ in session_ids)),
            settings=settings.model_copy(update={"insert_parameter_limit": 45}),
        )
        real_insert_many = service.repository.insert_many
        statements = []

        async def spy_insert_many(payloads):
            statements.append([p["session_id"] for p in payloads])
            return await real_insert_many(payloads)

        service.repository.insert_many = spy_insert_many

        result = await service.bulk_generate_and_persist(USER_ID, session_ids)

        # 15 bound columns per row, 45 parameters per statement
        assert statements == [[41, 42, 43], [44, 45, 46]]
        assert [d.session_id for d in result.debriefs] == session_ids
        assert all(d.version == 1 and d.is_active for d in result.debriefs)

    @pytest.mark.asyncio
    async def test_aggregated_insert_failure_falls_back_to_individual(self, make_service, workout_sessions):
        service = make_service(make_llm_provider(content_json(), content_json()))

        real_insert_many = service.repository.insert_many

        async def multi_row_fails(payloads):
            if len(payloads) > 1:
                raise _insert_failure()
            return await real_insert_many(payloads)

        service.repository.insert_many = multi_row_fails

        with capture_logs() as logs:
            result = await service.bulk_generate_and_persist(USER_ID, [41, 42])

        assert [d.session_id for d in result.debriefs] == [41, 42]
        assert result.errors == []
        assert any(e["event"] == "session_debrief.bulk_fallback_to_individual" for e in logs)

    @pytest.mark.asyncio
    async def test_individual_failure_keeps_previous_version_active(self, make_service, workout_sessions):
        v1 = await _seed_active(make_service, 43)
        service = make_service(make_llm_provider(content_json(), content_json()))
        real_insert_many = service.repository.insert_many

        async def flaky_insert_many(payloads):
            if len(payloads) > 1 or payloads[0]["session_id"] == 43:
                raise _insert_failure()
            return await real_insert_many(payloads)

        service.repository.insert_many = flaky_insert_many

        result = await service.bulk_generate_and_persist(USER_ID, [42, 43])

        assert [d.session_id for d in result.debriefs] == [42]
        assert [e.session_id for e in result.errors] == [43]
        active = await service.repository.get_active(USER_ID, 43)
        assert active is not None
        assert active.id == v1.id

    @pytest.mark.asyncio
    async def test_version_written_during_generation_is_superseded(self, make_service, workout_sessions):
        await _seed_active(make_service, 42)
        concurrent = make_service(make_llm_provider(content_json(summary="Regenerated meanwhile")))
        responses = iter([LLMResponse(content=content_json()), LLMResponse(content=content_json())])
        interleaved = []

        async def chat(messages, config):
            if not interleaved:
                regenerated = await concurrent.generate_and_persist(USER_ID, 42, trigger="regenerate")
                interleaved.append(regenerated.debrief)
            return next(responses)

        llm = make_llm_provider()
        llm.chat.side_effect = chat
        service = make_service(llm)

        result = await service.bulk_generate_and_persist(USER_ID, [42, 43])

        by_session = {d.session_id: d for d in result.debriefs}
        assert by_session[42].version == 3
        assert by_session[42].parent_debrief_id == interleaved[0].id
        versions = await service.repository.list_versions(USER_ID, 42)
        assert [(v.version, v.is_active) for v in versions] == [(1, False), (2, False), (3, True)]

    @pytest.mark.asyncio
    async def test_chunk_failure_without_savepoints_keeps_landed_rows(
        self, make_service, settings, workout_sessions
    ):
        session_ids = [41, 42, 43, 44, 45, 46]
        service = make_service(
            make_llm_provider(*(content_json() for _ in session_ids)),
            settings=settings.model_copy(
                update={"insert_parameter_limit": 45, "supports_nested_transactions": False}
            ),
        )
        real_insert_many = service.repository.insert_many
        statements = []

        async def second_statement_fails(payloads):
            statements.append([p["session_id"] for p in payloads])
            if len(statements) == 2:
                raise _insert_failure()
            return await real_insert_many(payloads)

        service.repository.insert_many = second_statement_fails

        with capture_logs() as logs:
            result = await service.bulk_generate_and_persist(USER_ID, session_ids)

        assert statements == [[41, 42, 43], [44, 45, 46], [44], [45], [46]]
        assert [d.session_id for d in result.debriefs] == session_ids
        assert result.errors == []
        fallback = [e for e in logs if e["event"] == "session_debrief.bulk_fallback_to_individual"]
        assert fallback[0]["landed"] == 3
        for session_id in session_ids:
            versions = await service.repository.list_versions(USER_ID, session_id)
            assert [(v.version, v.is_active) for v in versions] == [(1, True)]

    @pytest.mark.asyncio
    async def test_failed_row_without_savepoints_does_not_block_siblings(
        self, make_service, settings, workout_sessions
    ):
        v1 = await _seed_active(make_service, 44)
        service = make_service(
            make_llm_provider(content_json(), content_json(), content_json()),
            settings=settings.model_copy(update={"supports_nested_transactions": False}),
        )
        real_insert_many = service.repository.insert_many

        async def reject_session_44(payloads):
            if len(payloads) > 1:
                raise _insert_failure()
            payload = payloads[0]
            if payload["session_id"] == 44:
                # Violates the positive-version check in the database itself
                payload = {**payload, "version": 0}
            return await real_insert_many([payload])

        service.repository.insert_many = reject_session_44

        result = await service.bulk_generate_and_persist(USER_ID, [43, 44, 45])

        assert [d.session_id for d in result.debriefs] == [43, 45]
        assert [e.session_id for e in result.errors] == [44]
        assert result.errors[0].error.startswith("Failed to store debrief:")
        assert (await service.repository.get_active(USER_ID, 44)).id == v1.id
        assert (await service.repository.get_active(USER_ID, 45)).version == 1

    @pytest.mark.asyncio
    async def test_module_entry_point(
        self, async_db_session, settings, context_gatherer, shared_read_session, workout_sessions
    ):
        result = await bulk_generate_and_persist_debriefs(
            async_db_session,
            user_id=USER_ID,
            session_ids=[44, 45],
            llm_provider=make_llm_provider(content_json(), content_json()),
            context_gatherer=context_gatherer,
            read_session_factory=shared_read_session,
            settings=settings,
        )

        assert [d.session_id for d in result.debriefs] == [44, 45]
        assert result.skipped == []
