"""Tests for generation_service.

The DB session is an AsyncMock; the provider registry and queue are patched
at the module level.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from mediagen.app.config import get_settings
from mediagen.core.domain import Action, GenerationStatus, ProviderName
from mediagen.core.errors import (
    ConcurrentLimitExceededError,
    ForbiddenError,
    GenerationNotFoundError,
    InvalidGenerationStateError,
    InvalidRequestError,
    ModelNotFoundError,
    UpstreamUnavailableError,
)
from mediagen.core.models import Generation
from mediagen.providers.base import AsyncResult, Outcome, SyncResult
from mediagen.providers.catalog import ChainEntry
from mediagen.providers.registry import AllProvidersFailedError, Dispatched
from mediagen.services import generation_service as svc

MODULE = "mediagen.services.generation_service"


def _generation(**fields) -> Generation:
    values = {
        "id": "01JGEN0000000000000000000A",
        "user_id": "user-1",
        "action": Action.CREATE.value,
        "model_id": "flux-2-pro",
        "model_name": "FLUX 2 Pro",
        "status": GenerationStatus.PROCESSING.value,
        "provider": "replicate",
        "provider_model": "black-forest-labs/flux-2-pro",
        "prediction_id": "pred-1",
        "cost_credits": 3,
        "settings": {},
        "input_data": {"prompt": "a cat"},
    }
    values.update(fields)
    return Generation(**values)


def _result(scalar=None, items=None) -> MagicMock:
    result = MagicMock()
    result.scalar_one_or_none.return_value = scalar
    result.scalar.return_value = scalar
    result.scalars.return_value.all.return_value = items or []
    return result


def _settings_with(**dispatcher):
    settings = get_settings()
    return settings.model_copy(
        update={"dispatcher": settings.dispatcher.model_copy(update=dispatcher)}
    )


def _async_dispatch(provider=ProviderName.REPLICATE, model="black-forest-labs/flux-2-pro", position=0):
    return Dispatched(
        result=AsyncResult(provider, "pred-new", token_index=1),
        entry=ChainEntry(provider, model),
        chain_position=position,
    )


@pytest.fixture
def registry():
    registry = MagicMock()
    registry.dispatcher = AsyncMock()
    registry.generate = AsyncMock(return_value=_async_dispatch())
    registry.get.return_value = None
    with patch(f"{MODULE}.get_registry", return_value=registry):
        yield registry


@pytest.fixture
def save_media():
    with patch(f"{MODULE}.save_generation_media", new_callable=AsyncMock) as mock:
        mock.return_value = ["https://cdn.example.com/saved-0.png"]
        yield mock


class TestBuildInput:
    def test_merges_settings_and_inputs(self) -> None:
        data = svc.build_input(
            Action.EDIT,
            {"aspect_ratio": "1:1", svc.AUTO_RETRY_KEY: 2},
            prompt="make it blue",
            input_image_url="https://x.com/a.png",
        )
        assert data == {
            "aspect_ratio": "1:1",
            "prompt": "make it blue",
            "image": "https://x.com/a.png",
        }

    @pytest.mark.parametrize("action", [Action.REMOVE_BG, Action.INPAINT, Action.VIDEO_I2V])
    def test_image_required(self, action: Action) -> None:
        with pytest.raises(InvalidRequestError, match="An image is required"):
            svc.build_input(action, {}, prompt="p")

    def test_inpaint_requires_mask(self) -> None:
        with pytest.raises(InvalidRequestError, match="A mask is required"):
            svc.build_input(Action.INPAINT, {}, input_image_url="https://x.com/a.png")

        data = svc.build_input(
            Action.INPAINT, {"mask": "https://x.com/m.png"}, input_image_url="https://x.com/a.png"
        )
        assert data["mask"] == "https://x.com/m.png"

    def test_video_input(self) -> None:
        data = svc.build_input(Action.VIDEO_UPSCALE, None, input_video_url="https://x.com/v.mp4")
        assert data == {"video": "https://x.com/v.mp4"}


class TestGetGeneration:
    async def test_not_found(self, mock_db) -> None:
        mock_db.execute.return_value = _result(scalar=None)
        with pytest.raises(GenerationNotFoundError):
            await svc.get_generation(mock_db, "missing", "user-1")

    async def test_other_users_generation(self, mock_db) -> None:
        mock_db.execute.return_value = _result(scalar=_generation(user_id="someone-else"))
        with pytest.raises(ForbiddenError):
            await svc.get_generation(mock_db, "g", "user-1")

    async def test_owner(self, mock_db) -> None:
        generation = _generation()
        mock_db.execute.return_value = _result(scalar=generation)
        assert await svc.get_generation(mock_db, generation.id, "user-1") is generation


class TestQueries:
    async def test_list_generations(self, mock_db) -> None:
        items = [_generation(), _generation(id="01JGEN0000000000000000000B")]
        mock_db.execute.side_effect = [_result(scalar=7), _result(items=items)]

        result, total = await svc.list_generations(mock_db, "user-1", page=2, limit=500)

        assert result == items
        assert total == 7

    async def test_count_active(self, mock_db) -> None:
        mock_db.execute.return_value = _result(scalar=4)
        assert await svc.count_active_generations(mock_db, "user-1") == 4

    async def test_expire_stale_images(self, mock_db, registry) -> None:
        in_flight = _generation(provider="fal", prediction_id="req-1")
        never_submitted = _generation(
            id="01JGEN0000000000000000000B", status="pending", provider=None, prediction_id=None
        )
        mock_db.execute.return_value = _result(items=[in_flight, never_submitted])

        assert await svc.expire_stale_image_generations(mock_db, "user-1") == 2

        registry.dispatcher.release.assert_awaited_once_with("fal")
        for generation in (in_flight, never_submitted):
            assert generation.status == GenerationStatus.FAILED
            assert generation.error_message == svc.IMAGE_TIMEOUT_MESSAGE
            assert generation.completed_at is not None
        mock_db.commit.assert_awaited_once()

    async def test_expire_stale_images_nothing_stale(self, mock_db, registry) -> None:
        mock_db.execute.return_value = _result(items=[])

        assert await svc.expire_stale_image_generations(mock_db, "user-1") == 0

        registry.dispatcher.release.assert_not_called()
        mock_db.commit.assert_not_called()


class TestInsert:
    @pytest.fixture(autouse=True)
    def sleep(self):
        with patch(f"{MODULE}.asyncio.sleep", new_callable=AsyncMock) as mock:
            yield mock

    async def test_retries_dropped_connection(self, mock_db, sleep) -> None:
        mock_db.commit.side_effect = [
            OperationalError("INSERT", {}, Exception("server closed the connection")),
            None,
        ]
        generation = _generation(status="pending")

        await svc._insert(mock_db, generation)

        assert mock_db.commit.await_count == 2
        mock_db.rollback.assert_awaited_once()
        mock_db.refresh.assert_awaited_once_with(generation)
        sleep.assert_awaited_once_with(1)

    async def test_gives_up_after_configured_attempts(self, mock_db, sleep) -> None:
        mock_db.commit.side_effect = OperationalError(
            "INSERT", {}, Exception("server closed the connection")
        )
        attempts = get_settings().generation.insert_attempts

        with pytest.raises(OperationalError):
            await svc._insert(mock_db, _generation(status="pending"))

        assert mock_db.commit.await_count == attempts
        assert mock_db.rollback.await_count == attempts
        assert sleep.await_count == attempts - 1

    async def test_constraint_violation_not_retried(self, mock_db, sleep) -> None:
        mock_db.commit.side_effect = IntegrityError("INSERT", {}, Exception("duplicate key"))

        with pytest.raises(IntegrityError):
            await svc._insert(mock_db, _generation(status="pending"))

        mock_db.commit.assert_awaited_once()
        mock_db.rollback.assert_awaited_once()
        sleep.assert_not_called()


class TestCreateGeneration:
    @pytest.fixture(autouse=True)
    def quota(self):
        with (
            patch(f"{MODULE}.expire_stale_image_generations", new_callable=AsyncMock),
            patch(f"{MODULE}.count_active_generations", new_callable=AsyncMock) as count,
        ):
            count.return_value = 0
            yield count

    async def test_concurrent_limit(self, mock_db, quota, registry) -> None:
        quota.return_value = get_settings().generation.max_concurrent_per_user

        with pytest.raises(ConcurrentLimitExceededError):
            await svc.create_generation(mock_db, "user-1", Action.CREATE, "flux-2-pro", prompt="p")
        mock_db.add.assert_not_called()

    async def test_unknown_model(self, mock_db, registry) -> None:
        with pytest.raises(ModelNotFoundError):
            await svc.create_generation(mock_db, "user-1", Action.CREATE, "nope", prompt="p")

    async def test_action_mismatch(self, mock_db, registry) -> None:
        with pytest.raises(InvalidRequestError, match="does not support"):
            await svc.create_generation(mock_db, "user-1", Action.UPSCALE, "flux-2-pro", prompt="p")

    async def test_direct_async_dispatch(self, mock_db, registry) -> None:
        generation = await svc.create_generation(
            mock_db, "user-1", Action.CREATE, "flux-2-pro", prompt="a cat", settings={"seed": 1}
        )

        assert generation.status == GenerationStatus.PROCESSING
        assert generation.provider == "replicate"
        assert generation.prediction_id == "pred-new"
        assert generation.provider_token_index == 1
        assert generation.cost_credits == 3
        assert generation.input_data == {"seed": 1, "prompt": "a cat"}
        assert generation.started_at is not None
        params = registry.generate.await_args.args[0]
        assert params.generation_id == generation.id
        assert registry.generate.await_args.kwargs["start_from"] == 0

    async def test_direct_sync_dispatch_completes(self, mock_db, registry) -> None:
        registry.generate.return_value = Dispatched(
            result=SyncResult(ProviderName.GOOGLE, ["https://cdn.example.com/g.png"]),
            entry=ChainEntry(ProviderName.GOOGLE, "gemini-2.5-flash-image"),
            chain_position=0,
        )

        generation = await svc.create_generation(
            mock_db, "user-1", Action.CREATE, "nano-banana", prompt="a cat"
        )

        assert generation.status == GenerationStatus.COMPLETED
        assert generation.output_urls == ["https://cdn.example.com/g.png"]
        assert generation.prediction_id is None
        assert generation.completed_at is not None
        # Credit deduction
        assert mock_db.execute.await_count == 1

    async def test_all_providers_failed(self, mock_db, registry) -> None:
        registry.generate.side_effect = AllProvidersFailedError([("replicate", "rate limit exceeded")])

        with pytest.raises(UpstreamUnavailableError) as exc_info:
            await svc.create_generation(mock_db, "user-1", Action.CREATE, "flux-2-pro", prompt="p")

        assert exc_info.value.message == "Server overloaded. Try again in a few minutes"
        generation = mock_db.add.call_args.args[0]
        assert generation.status == GenerationStatus.FAILED
        assert "rate limit exceeded" in generation.error_message

    async def test_client_cannot_set_auto_retry_count(self, mock_db, registry) -> None:
        generation = await svc.create_generation(
            mock_db,
            "user-1",
            Action.CREATE,
            "flux-2-pro",
            prompt="p",
            settings={"seed": 1, svc.AUTO_RETRY_KEY: "abc"},
        )

        assert generation.settings == {"seed": 1}
        assert svc.AUTO_RETRY_KEY not in generation.input_data

    async def test_queue_mode_enqueues(self, mock_db, registry) -> None:
        queue = AsyncMock()
        with (
            patch(f"{MODULE}._settings", _settings_with(mode="queue")),
            patch(f"{MODULE}.get_queue", return_value=queue),
        ):
            generation = await svc.create_generation(
                mock_db, "user-1", Action.CREATE, "flux-2-pro", prompt="p"
            )

        queue.push.assert_awaited_once_with({"generation_id": generation.id, "start_from": 0})
        registry.generate.assert_not_called()
        assert generation.status == GenerationStatus.PENDING


class TestRetryGeneration:
    async def test_only_failed(self, mock_db, registry) -> None:
        mock_db.execute.return_value = _result(scalar=_generation(status="completed"))

        with pytest.raises(InvalidGenerationStateError, match="Only failed generations"):
            await svc.retry_generation(mock_db, "user-1", "g")

    async def test_restarts_chain(self, mock_db, registry) -> None:
        generation = _generation(
            status="failed",
            error_message="boom",
            chain_position=1,
            settings={"seed": 3, svc.AUTO_RETRY_KEY: 4},
            input_data={"prompt": "p", svc.AUTO_RETRY_KEY: 4},
            completed_at=datetime.now(UTC),
        )
        mock_db.execute.return_value = _result(scalar=generation)

        result = await svc.retry_generation(mock_db, "user-1", generation.id)

        assert result.status == GenerationStatus.PROCESSING
        assert result.settings == {"seed": 3}
        assert result.input_data == {"prompt": "p"}
        assert result.error_message is None
        assert result.completed_at is None
        assert result.prediction_id == "pred-new"
        assert registry.generate.await_args.kwargs["start_from"] == 0


class TestCancelAndDelete:
    async def test_cancel_requires_active(self, mock_db, registry) -> None:
        mock_db.execute.return_value = _result(scalar=_generation(status="failed"))
        with pytest.raises(InvalidGenerationStateError):
            await svc.cancel_generation(mock_db, "user-1", "g")

    async def test_cancel_in_flight(self, mock_db, registry) -> None:
        provider = AsyncMock()
        registry.get.return_value = provider
        generation = _generation(provider_token_index=1)
        mock_db.execute.return_value = _result(scalar=generation)

        result = await svc.cancel_generation(mock_db, "user-1", generation.id)

        assert result.status == GenerationStatus.CANCELLED
        assert result.completed_at is not None
        provider.cancel.assert_awaited_once_with("black-forest-labs/flux-2-pro", "pred-1", 1)
        registry.dispatcher.release.assert_awaited_once_with("replicate")

    async def test_cancel_survives_upstream_error(self, mock_db, registry) -> None:
        provider = AsyncMock()
        provider.cancel.side_effect = RuntimeError("provider down")
        registry.get.return_value = provider
        mock_db.execute.return_value = _result(scalar=_generation())

        result = await svc.cancel_generation(mock_db, "user-1", "g")

        assert result.status == GenerationStatus.CANCELLED

    async def test_cancel_pending_without_prediction(self, mock_db, registry) -> None:
        mock_db.execute.return_value = _result(
            scalar=_generation(status="pending", provider=None, prediction_id=None)
        )

        result = await svc.cancel_generation(mock_db, "user-1", "g")

        assert result.status == GenerationStatus.CANCELLED
        registry.dispatcher.release.assert_not_called()

    async def test_delete_active_cancels_first(self, mock_db, registry) -> None:
        provider = AsyncMock()
        registry.get.return_value = provider
        generation = _generation()
        mock_db.execute.return_value = _result(scalar=generation)

        await svc.delete_generation(mock_db, "user-1", generation.id)

        provider.cancel.assert_awaited_once()
        mock_db.delete.assert_awaited_once_with(generation)
        mock_db.commit.assert_awaited()

    async def test_delete_finished(self, mock_db, registry) -> None:
        provider = AsyncMock()
        registry.get.return_value = provider
        mock_db.execute.return_value = _result(scalar=_generation(status="completed"))

        await svc.delete_generation(mock_db, "user-1", "g")

        provider.cancel.assert_not_called()
        mock_db.delete.assert_awaited_once()


class TestApplyOutcome:
    async def test_terminal_generation_untouched(self, mock_db, registry) -> None:
        generation = _generation(status="completed", output_urls=["https://old"])

        changed = await svc.apply_outcome(
            mock_db, generation, Outcome(GenerationStatus.FAILED, error="late")
        )

        assert changed is False
        assert generation.status == "completed"
        mock_db.commit.assert_not_called()

    async def test_completed_saves_media(self, mock_db, registry, save_media) -> None:
        generation = _generation()
        outcome = Outcome(GenerationStatus.COMPLETED, media_urls=["https://replicate.delivery/a.png"])

        assert await svc.apply_outcome(mock_db, generation, outcome) is True

        save_media.assert_awaited_once_with(["https://replicate.delivery/a.png"], generation.id)
        assert generation.status == GenerationStatus.COMPLETED
        assert generation.output_urls == ["https://cdn.example.com/saved-0.png"]
        registry.dispatcher.report_success.assert_awaited_once_with("replicate")

    async def test_completed_keeps_provider_urls_when_save_fails(
        self, mock_db, registry, save_media
    ) -> None:
        save_media.return_value = []
        generation = _generation()

        await svc.apply_outcome(
            mock_db,
            generation,
            Outcome(GenerationStatus.COMPLETED, media_urls=["https://replicate.delivery/a.png"]),
        )

        assert generation.output_urls == ["https://replicate.delivery/a.png"]

    async def test_completed_analyze_stores_text(self, mock_db, registry, save_media) -> None:
        generation = _generation(action=Action.ANALYZE_DESCRIBE.value, model_id="blip-2")

        await svc.apply_outcome(
            mock_db,
            generation,
            Outcome(GenerationStatus.COMPLETED, output_text="a dog", raw_output=["a dog"]),
        )

        save_media.assert_not_called()
        assert generation.output_text == "a dog"
        assert generation.output_urls == []

    async def test_failed_permanent_error(self, mock_db, registry) -> None:
        generation = _generation(model_id="birefnet", action=Action.REMOVE_BG.value)

        await svc.apply_outcome(
            mock_db, generation, Outcome(GenerationStatus.FAILED, error="NSFW content detected")
        )

        assert generation.status == GenerationStatus.FAILED
        assert generation.error_message == "Content blocked by safety filter. Try changing your prompt"
        registry.generate.assert_not_called()
        registry.dispatcher.release.assert_awaited_once_with("replicate")

    async def test_failed_retryable_moves_to_next_provider(self, mock_db, registry) -> None:
        registry.generate.return_value = _async_dispatch(ProviderName.FAL, "fal-ai/birefnet", 1)
        generation = _generation(
            model_id="birefnet",
            action=Action.REMOVE_BG.value,
            provider_model="men1scus/birefnet",
        )

        changed = await svc.apply_outcome(
            mock_db, generation, Outcome(GenerationStatus.FAILED, error="Prediction timed out")
        )

        assert changed is True
        assert registry.generate.await_args.kwargs["start_from"] == 1
        assert generation.settings[svc.AUTO_RETRY_KEY] == 1
        assert generation.status == GenerationStatus.PROCESSING
        assert generation.provider == "fal"
        assert generation.chain_position == 1
        registry.dispatcher.release.assert_awaited_once_with("replicate")

    async def test_failed_retryable_at_chain_end(self, mock_db, registry) -> None:
        generation = _generation(
            model_id="birefnet", action=Action.REMOVE_BG.value, provider="fal", chain_position=1
        )

        await svc.apply_outcome(
            mock_db, generation, Outcome(GenerationStatus.FAILED, error="Prediction timed out")
        )

        registry.generate.assert_not_called()
        assert generation.status == GenerationStatus.FAILED

    async def test_failed_retryable_retry_budget_spent(self, mock_db, registry) -> None:
        generation = _generation(
            model_id="birefnet",
            action=Action.REMOVE_BG.value,
            settings={svc.AUTO_RETRY_KEY: get_settings().dispatcher.max_auto_retries},
        )

        await svc.apply_outcome(
            mock_db, generation, Outcome(GenerationStatus.FAILED, error="Prediction timed out")
        )

        registry.generate.assert_not_called()
        assert generation.status == GenerationStatus.FAILED

    async def test_malformed_retry_count_counts_as_zero(self, mock_db, registry) -> None:
        registry.generate.return_value = _async_dispatch(ProviderName.FAL, "fal-ai/birefnet", 1)
        generation = _generation(
            model_id="birefnet",
            action=Action.REMOVE_BG.value,
            settings={svc.AUTO_RETRY_KEY: "abc"},
        )

        changed = await svc.apply_outcome(
            mock_db, generation, Outcome(GenerationStatus.FAILED, error="Prediction timed out")
        )

        assert changed is True
        assert generation.settings[svc.AUTO_RETRY_KEY] == 1
        assert registry.generate.await_args.kwargs["start_from"] == 1

    async def test_auto_retry_dispatch_failure_stores_friendly_message(
        self, mock_db, registry
    ) -> None:
        registry.generate.side_effect = AllProvidersFailedError(
            [("fal", "fal HTTP 500: Traceback (most recent call last): stack frame")]
        )
        generation = _generation(model_id="birefnet", action=Action.REMOVE_BG.value)

        changed = await svc.apply_outcome(
            mock_db, generation, Outcome(GenerationStatus.FAILED, error="Prediction timed out")
        )

        assert changed is True
        assert generation.status == GenerationStatus.FAILED
        assert generation.error_message == "An error occurred. Please try again"
        assert "Traceback" not in generation.error_message

    async def test_locks_row_before_applying(self, mock_db, registry, save_media) -> None:
        generation = _generation()

        await svc.apply_outcome(
            mock_db,
            generation,
            Outcome(GenerationStatus.COMPLETED, media_urls=["https://replicate.delivery/a.png"]),
        )

        mock_db.refresh.assert_awaited_once_with(generation, with_for_update=True)

    async def test_finished_concurrently_is_skipped(self, mock_db, registry, save_media) -> None:
        generation = _generation()

        async def finished_elsewhere(obj, **kwargs):
            obj.status = GenerationStatus.COMPLETED.value

        mock_db.refresh.side_effect = finished_elsewhere

        changed = await svc.apply_outcome(
            mock_db,
            generation,
            Outcome(GenerationStatus.COMPLETED, media_urls=["https://replicate.delivery/a.png"]),
        )

        assert changed is False
        save_media.assert_not_called()
        registry.dispatcher.report_success.assert_not_called()
        registry.dispatcher.release.assert_not_called()
        # No credit deduction
        mock_db.execute.assert_not_called()
        mock_db.commit.assert_awaited_once()

    async def test_resubmitted_concurrently_is_skipped(self, mock_db, registry) -> None:
        generation = _generation()

        async def resubmitted(obj, **kwargs):
            obj.prediction_id = "pred-other"

        mock_db.refresh.side_effect = resubmitted

        changed = await svc.apply_outcome(
            mock_db, generation, Outcome(GenerationStatus.FAILED, error="NSFW content detected")
        )

        assert changed is False
        assert generation.status == GenerationStatus.PROCESSING
        registry.dispatcher.release.assert_not_called()

    async def test_cancelled(self, mock_db, registry) -> None:
        generation = _generation()

        await svc.apply_outcome(mock_db, generation, Outcome(GenerationStatus.CANCELLED))

        assert generation.status == GenerationStatus.CANCELLED
        registry.dispatcher.release.assert_awaited_once_with("replicate")

    async def test_processing_is_no_change(self, mock_db, registry) -> None:
        generation = _generation()
        assert await svc.apply_outcome(mock_db, generation, Outcome(GenerationStatus.PROCESSING)) is False
        assert generation.status == GenerationStatus.PROCESSING


class TestSyncUserGenerations:
    async def test_applies_finished_outcomes(self, mock_db, registry, save_media) -> None:
        done = _generation()
        running = _generation(id="01JGEN0000000000000000000B", prediction_id="pred-2")
        mock_db.execute.return_value = _result(items=[done, running])

        provider = AsyncMock()
        provider.poll.side_effect = [
            Outcome(GenerationStatus.COMPLETED, media_urls=["https://replicate.delivery/a.png"]),
            Outcome(GenerationStatus.PROCESSING),
        ]
        registry.get.return_value = provider

        result = await svc.sync_user_generations(mock_db, "user-1")

        assert result == {"synced": 1, "total": 2}
        assert done.status == GenerationStatus.COMPLETED
        assert running.status == GenerationStatus.PROCESSING

    async def test_poll_errors_are_skipped(self, mock_db, registry) -> None:
        generation = _generation()
        mock_db.execute.return_value = _result(items=[generation])
        provider = AsyncMock()
        provider.poll.side_effect = RuntimeError("provider down")
        registry.get.return_value = provider

        result = await svc.sync_user_generations(mock_db, "user-1")

        assert result == {"synced": 0, "total": 1}
        assert generation.status == GenerationStatus.PROCESSING


class TestStaleCleanup:
    async def test_cleanup(self, mock_db, registry, save_media) -> None:
        old = datetime.now(UTC) - timedelta(hours=2)
        never_started = _generation(id="A", status="pending", provider=None, prediction_id=None, created_at=old)
        still_running = _generation(id="B", prediction_id="p-b", created_at=old)
        finished = _generation(id="C", prediction_id="p-c", created_at=old)
        unreachable = _generation(id="D", prediction_id="p-d", created_at=old)
        mock_db.execute.return_value = _result(
            items=[never_started, still_running, finished, unreachable]
        )

        async def poll(provider_model, prediction_id, token_index=None, text_output=False):
            if prediction_id == "p-b":
                return Outcome(GenerationStatus.PROCESSING)
            if prediction_id == "p-c":
                return Outcome(GenerationStatus.COMPLETED, media_urls=["https://replicate.delivery/c.png"])
            raise RuntimeError("unreachable")

        provider = MagicMock()
        provider.poll = poll
        registry.get.return_value = provider

        result = await svc.cleanup_stale(mock_db)

        assert result == {"total": 4, "synced": 1, "cleaned": 3}
        assert never_started.error_message == svc.NEVER_STARTED_MESSAGE
        assert still_running.error_message == svc.STALE_TIMEOUT_MESSAGE
        assert finished.status == GenerationStatus.COMPLETED
        assert unreachable.error_message == svc.SYNC_FAILED_MESSAGE

    async def test_nothing_stale(self, mock_db, registry) -> None:
        mock_db.execute.return_value = _result(items=[])
        assert await svc.cleanup_stale(mock_db) == {"total": 0, "synced": 0, "cleaned": 0}

    async def test_stale_stats(self, mock_db) -> None:
        mock_db.execute.return_value = _result(
            items=[_generation(id="A"), _generation(id="B"), _generation(id="C", user_id="user-2")]
        )

        stats = await svc.stale_stats(mock_db)

        assert stats["stale_count"] == 3
        assert stats["affected_users"] == 2
        assert stats["by_user"] == {"user-1": 2, "user-2": 1}
        assert stats["threshold_minutes"] == get_settings().generation.stale_threshold_minutes
