"""
Unit Tests for JobWorker
"""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from mediaforge.core.provider_adapter import ProviderError, ProviderStatus, ProviderSubmitResponse
from mediaforge.services.job_state import transition_state
from mediaforge.services.job_worker import JobWorker
from mediaforge.services.status_query import StatusQueryService
from mediaforge.services.finalizer import ArtifactFinalizer
from mediaforge.services.ffmpeg_stitcher import FFmpegError
from mediaforge.services.storage import AssetDB, JobDB
from mediaforge.services.webhook_receiver import WebhookEvent, WebhookReceiver

from fixtures import SAMPLE_MP4_BYTES, SAMPLE_SHOT_LIST

pytestmark = pytest.mark.asyncio


PROVIDER_IMAGE = "https://cdn.provider.example/out/gen_123.png"
PROVIDER_VIDEO = "https://cdn.provider.example/out/gen_123.mp4"


def _worker(provider, storage, **kwargs) -> JobWorker:
    kwargs.setdefault("poll_interval_s", 0)
    kwargs.setdefault("poll_timeout_s", 5)
    kwargs.setdefault("sleep", AsyncMock())
    return JobWorker(provider=provider, storage=storage, **kwargs)


def _fake_stitcher():
    def stitch(stills, output_path, width, height, fps):
        with open(output_path, "wb") as f:
            f.write(SAMPLE_MP4_BYTES)
        return {"output_path": output_path, "duration_s": 7.0, "size_bytes": len(SAMPLE_MP4_BYTES)}

    return Mock(stitch=Mock(side_effect=stitch))


class TestSingleShot:
    async def test_synchronous_result(self, test_db_session, make_job, mock_provider, storage):
        job = make_job(test_db_session, visibility="public", allow_remix=True, params={"seed": 9})
        mock_provider.submit_generation.return_value = ProviderSubmitResponse(result_url=PROVIDER_IMAGE)

        outcome = await _worker(mock_provider, storage).process(test_db_session, job.job_id)

        assert outcome.ok is True
        assert outcome.handled is True
        assert outcome.status == "completed"
        assert outcome.result_url == f"https://media.test/mediaforge/outputs/user-1/{job.job_id}.png"

        request = mock_provider.submit_generation.call_args.args[0]
        assert request.is_video is False
        assert request.seed == 9
        assert request.metadata == {"job_id": job.job_id}

        stored = JobDB.get_job(test_db_session, job.job_id, refresh=True)
        assert stored.progress == 100
        assert stored.provider_persisted is True
        assert stored.result_public_id == f"mediaforge/outputs/user-1/{job.job_id}.png"

        asset = AssetDB.get_by_source_job(test_db_session, job.job_id)
        assert asset.asset_id == outcome.asset_id
        assert asset.media_type == "image"
        assert asset.visibility == "public"
        assert asset.allow_remix is True
        assert asset.meta["seed"] == 9
        assert "public" in storage.get_object(stored.result_public_id)["tags"]

    async def test_polls_until_success(self, test_db_session, make_job, mock_provider, storage):
        job = make_job(
            test_db_session,
            source_url="https://media.test/mediaforge/inputs/user-1/clip.mp4",
            source_media_type="video",
        )
        mock_provider.submit_generation.return_value = ProviderSubmitResponse(provider_job_id="gen_123")
        mock_provider.get_status.side_effect = [
            ProviderStatus(state="processing", raw_state="processing", progress=40),
            ProviderStatus(state="processing", raw_state="processing", progress=99),
            ProviderStatus(state="succeeded", raw_state="completed", result_url=PROVIDER_VIDEO),
        ]

        outcome = await _worker(mock_provider, storage).process(test_db_session, job.job_id)

        assert outcome.status == "completed"
        assert mock_provider.get_status.await_count == 3
        assert mock_provider.get_status.call_args.kwargs == {"is_video": True}

        stored = JobDB.get_job(test_db_session, job.job_id, refresh=True)
        assert stored.provider_job_id == "gen_123"
        assert stored.result_ref.endswith(f"{job.job_id}.mp4")
        assert [t["event"] for t in stored.state_transitions] == [
            "job_created",
            "worker_claimed",
            "job_completed",
        ]
        assert AssetDB.get_by_source_job(test_db_session, job.job_id).media_type == "video"

    async def test_provider_failure(self, test_db_session, make_job, mock_provider, storage):
        job = make_job(test_db_session)
        mock_provider.submit_generation.return_value = ProviderSubmitResponse(provider_job_id="gen_123")
        mock_provider.get_status.return_value = ProviderStatus(
            state="failed", raw_state="failed", error="content policy"
        )

        outcome = await _worker(mock_provider, storage).process(test_db_session, job.job_id)

        assert outcome.ok is False
        assert outcome.status == "failed"
        assert outcome.error == "Provider job failed: content policy"

        stored = JobDB.get_job(test_db_session, job.job_id, refresh=True)
        assert stored.status == "failed"
        assert stored.error_code == "PROVIDER_FAILED"
        assert stored.failed_at is not None
        assert AssetDB.count_for_job(test_db_session, job.job_id) == 0

    async def test_submit_rejected(self, test_db_session, make_job, mock_provider, storage):
        job = make_job(test_db_session)
        mock_provider.submit_generation.side_effect = ProviderError(
            "Provider request failed: 422 bad prompt", status_code=422, body="bad prompt"
        )

        outcome = await _worker(mock_provider, storage).process(test_db_session, job.job_id)

        assert outcome.status == "failed"
        stored = JobDB.get_job(test_db_session, job.job_id, refresh=True)
        assert stored.error_code == "PROVIDER_REJECTED"
        assert "422" in stored.error

    async def test_poll_timeout(self, test_db_session, make_job, mock_provider, storage):
        job = make_job(test_db_session)
        mock_provider.submit_generation.return_value = ProviderSubmitResponse(provider_job_id="gen_123")
        mock_provider.get_status.return_value = ProviderStatus(state="processing", raw_state="processing")

        worker = _worker(
            mock_provider,
            storage,
            poll_interval_s=0.01,
            poll_timeout_s=0.05,
            sleep=asyncio.sleep,
        )
        outcome = await worker.process(test_db_session, job.job_id)

        assert outcome.status == "failed"
        assert outcome.error == "Timeout waiting for provider result after 0.05s"
        assert JobDB.get_job(test_db_session, job.job_id, refresh=True).error_code == "PROVIDER_TIMEOUT"

    async def test_poll_stops_on_external_terminal_state(
        self, test_db_session, make_job, mock_provider, storage
    ):
        job = make_job(test_db_session)
        mock_provider.submit_generation.return_value = ProviderSubmitResponse(provider_job_id="gen_123")

        async def cancel_then_report(provider_job_id, is_video=True):
            transition_state(test_db_session, job.job_id, "canceled", "user_canceled")
            return ProviderStatus(state="processing", raw_state="processing")

        mock_provider.get_status.side_effect = cancel_then_report

        outcome = await _worker(mock_provider, storage).process(test_db_session, job.job_id)

        assert outcome.status == "canceled"
        assert outcome.ok is False
        assert mock_provider.get_status.await_count == 1
        assert AssetDB.count_for_job(test_db_session, job.job_id) == 0

    async def test_webhook_completes_during_poll(
        self, test_db_session, session_factory, make_job, mock_provider, storage
    ):
        job = make_job(test_db_session)
        mock_provider.submit_generation.return_value = ProviderSubmitResponse(provider_job_id="gen_123")

        async def webhook_then_report(provider_job_id, is_video=True):
            other = session_factory()
            try:
                WebhookReceiver().apply(
                    other,
                    WebhookEvent(job_id=job.job_id, state="completed", output_url=PROVIDER_IMAGE),
                )
            finally:
                other.close()
            return ProviderStatus(state="processing", raw_state="processing")

        mock_provider.get_status.side_effect = webhook_then_report

        outcome = await _worker(mock_provider, storage).process(test_db_session, job.job_id)

        assert outcome.status == "completed"
        assert outcome.asset_id is not None
        stored = JobDB.get_job(test_db_session, job.job_id, refresh=True)
        assert stored.provider_persisted is True
        assert stored.result_ref.startswith("https://media.test/mediaforge/outputs/user-1/")
        assert [t["event"] for t in stored.state_transitions][-2:] == ["webhook_completed", "result_persisted"]
        assert AssetDB.count_for_job(test_db_session, job.job_id) == 1

    async def test_upload_failure_fails_job(self, test_db_session, make_job, mock_provider, storage):
        job = make_job(test_db_session)
        mock_provider.submit_generation.return_value = ProviderSubmitResponse(
            result_url="https://cdn.provider.example/broken.png"
        )

        outcome = await _worker(mock_provider, storage).process(test_db_session, job.job_id)

        assert outcome.status == "failed"
        stored = JobDB.get_job(test_db_session, job.job_id, refresh=True)
        assert stored.error_code == "STORAGE_UPLOAD_FAILED"
        assert stored.persist_token is None
        assert stored.provider_persisted is False


class TestDuplicateInvocation:
    async def test_second_invocation_is_noop(self, test_db_session, make_job, mock_provider, storage):
        job = make_job(test_db_session)
        mock_provider.submit_generation.return_value = ProviderSubmitResponse(result_url=PROVIDER_IMAGE)
        worker = _worker(mock_provider, storage)

        first = await worker.process(test_db_session, job.job_id)
        second = await worker.process(test_db_session, job.job_id)

        assert first.handled is True
        assert second.handled is False
        assert second.message == "Already handled"
        assert second.status == "completed"
        assert mock_provider.submit_generation.await_count == 1
        assert AssetDB.count_for_job(test_db_session, job.job_id) == 1

    async def test_unknown_job(self, test_db_session, mock_provider, storage):
        outcome = await _worker(mock_provider, storage).process(test_db_session, "missing")

        assert outcome.ok is False
        assert outcome.handled is False
        assert outcome.status is None
        assert outcome.message == "Job not found"


class TestStory:
    async def test_story_success(self, test_db_session, make_job, mock_provider, storage, scratch_root):
        job = make_job(
            test_db_session,
            kind="story",
            directive="cyberpunk hero, neon rain",
            shot_list=SAMPLE_SHOT_LIST,
            fps=24,
            width=720,
            height=1280,
            params={"strength": 0.7, "steps": 30, "guidance_scale": 7.0, "seed": 500},
        )
        mock_provider.generate_image.side_effect = [
            f"https://cdn.provider.example/out/shot{i}.png" for i in range(1, 4)
        ]
        stitcher = _fake_stitcher()

        outcome = await _worker(mock_provider, storage, stitcher=stitcher).process(test_db_session, job.job_id)

        assert outcome.status == "completed"
        requests = [call.args[0] for call in mock_provider.generate_image.call_args_list]
        assert [r.seed for r in requests] == [500, 601, 702]
        assert all(r.width == 720 and r.height == 1280 for r in requests)
        assert "wide shot on a rooftop at dusk" in requests[0].prompt

        stills, output_path, width, height, fps = stitcher.stitch.call_args.args
        assert [s.rsplit("/", 1)[-1] for s in stills] == ["shot_01.png", "shot_02.png", "shot_03.png"]
        assert (width, height, fps) == (720, 1280, 24)

        stored = JobDB.get_job(test_db_session, job.job_id, refresh=True)
        assert stored.result_ref == f"https://media.test/mediaforge/outputs/user-1/{job.job_id}.mp4"
        uploaded = storage.get_object(stored.result_public_id)
        assert "kind:story" in uploaded["tags"]
        assert uploaded["context"]["duration"] == "7.0"

        asset = AssetDB.get_by_source_job(test_db_session, job.job_id)
        assert asset.media_type == "video"
        assert asset.meta["duration_s"] == 7.0
        assert asset.meta["fps"] == 24
        assert list(scratch_root.iterdir()) == []

    async def test_story_shot_failure(self, test_db_session, make_job, mock_provider, storage, scratch_root):
        job = make_job(test_db_session, kind="story", directive="hero", shot_list=SAMPLE_SHOT_LIST + [
            {"name": "finale", "add": "hero shot"},
        ])
        mock_provider.generate_image.side_effect = [
            "https://cdn.provider.example/out/shot1.png",
            "https://cdn.provider.example/out/shot2.png",
            ProviderError("Provider request failed: 500 boom", status_code=500, body="boom"),
        ]
        stitcher = _fake_stitcher()

        outcome = await _worker(mock_provider, storage, stitcher=stitcher).process(test_db_session, job.job_id)

        assert outcome.status == "failed"
        assert outcome.error == "Shot 3 failed: 500 boom"
        assert mock_provider.generate_image.await_count == 3
        stitcher.stitch.assert_not_called()

        stored = JobDB.get_job(test_db_session, job.job_id, refresh=True)
        assert stored.error_code == "PROVIDER_FAILED"
        assert stored.result_ref is None
        assert AssetDB.count_for_job(test_db_session, job.job_id) == 0
        assert list(scratch_root.iterdir()) == []

    async def test_story_stitch_failure(self, test_db_session, make_job, mock_provider, storage, scratch_root):
        job = make_job(test_db_session, kind="story", directive="hero", shot_list=SAMPLE_SHOT_LIST)
        mock_provider.generate_image.return_value = "https://cdn.provider.example/out/shot.png"
        stitcher = Mock(
            stitch=Mock(
                side_effect=FFmpegError(
                    "Stitch failed: ffmpeg exited with code 1: invalid filter",
                    "STITCH_FAILED",
                )
            )
        )

        outcome = await _worker(mock_provider, storage, stitcher=stitcher).process(test_db_session, job.job_id)

        assert outcome.status == "failed"
        assert outcome.error.startswith("Stitch failed")
        stored = JobDB.get_job(test_db_session, job.job_id, refresh=True)
        assert stored.status == "failed"
        assert stored.error_code == "STITCH_FAILED"
        assert stored.result_ref is None
        assert AssetDB.count_for_job(test_db_session, job.job_id) == 0
        assert list(scratch_root.iterdir()) == []

    async def test_story_still_download_failure(
        self, test_db_session, make_job, mock_provider, storage, scratch_root
    ):
        job = make_job(test_db_session, kind="story", directive="hero", shot_list=SAMPLE_SHOT_LIST)
        mock_provider.generate_image.side_effect = [
            "https://cdn.provider.example/out/shot1.png",
            "https://cdn.provider.example/out/missing2.png",
            "https://cdn.provider.example/out/shot3.png",
        ]
        stitcher = _fake_stitcher()

        outcome = await _worker(mock_provider, storage, stitcher=stitcher).process(test_db_session, job.job_id)

        assert outcome.status == "failed"
        assert outcome.error.startswith("Shot 2 failed")
        assert "404" in outcome.error
        assert mock_provider.generate_image.await_count == 2
        stitcher.stitch.assert_not_called()
        assert AssetDB.count_for_job(test_db_session, job.job_id) == 0
        assert list(scratch_root.iterdir()) == []

    async def test_story_uses_default_shots(self, test_db_session, make_job, mock_provider, storage, scratch_root):
        job = make_job(test_db_session, kind="story", directive="hero")
        mock_provider.generate_image.return_value = "https://cdn.provider.example/out/shot.png"

        outcome = await _worker(mock_provider, storage, stitcher=_fake_stitcher()).process(
            test_db_session, job.job_id
        )

        assert outcome.status == "completed"
        assert mock_provider.generate_image.await_count == 4


class TestPersistOnce:
    async def test_worker_and_status_query_race(
        self, session_factory, make_job, mock_provider, storage
    ):
        setup = session_factory()
        job = make_job(setup)
        transition_state(setup, job.job_id, "processing", "worker_claimed")
        WebhookReceiver().apply(
            setup, WebhookEvent(job_id=job.job_id, state="completed", output_url=PROVIDER_IMAGE)
        )
        setup.close()

        worker_db = session_factory()
        query_db = session_factory()
        worker = _worker(mock_provider, storage)
        status_service = StatusQueryService(ArtifactFinalizer(storage))

        outcome, envelope = await asyncio.gather(
            worker.finalize_completed(worker_db, job.job_id),
            status_service.get_status(query_db, job.job_id, "user-1", persist=True),
        )

        check = session_factory()
        assets = AssetDB.count_for_job(check, job.job_id)
        stored = JobDB.get_job(check, job.job_id)
        for session in (worker_db, query_db, check):
            session.close()

        assert assets == 1
        assert stored.provider_persisted is True
        assert outcome.status == "completed"
        assert envelope.status == "done"

