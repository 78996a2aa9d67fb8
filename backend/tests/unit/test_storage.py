"""
Unit Tests for JobDB conditional updates
"""

from datetime import datetime, timedelta

from mediaforge.models.asset import AssetModel
from mediaforge.models.job import JobModel
from mediaforge.services.job_state import transition_state
from mediaforge.services.storage import AssetDB, JobDB


def _processing_job(db, make_job, **overrides):
    job = make_job(db, **overrides)
    return transition_state(db, job.job_id, "processing", "worker_claimed", progress=1)


def _asset(job_id: str, url: str = "https://media.test/mediaforge/outputs/user-1/x.png") -> AssetModel:
    return AssetModel(
        asset_id=AssetModel.generate_asset_id(),
        owner_user_id="user-1",
        source_job_id=job_id,
        media_url=url,
        media_type="image",
    )


def test_update_progress_only_increases(test_db_session, make_job):
    job = _processing_job(test_db_session, make_job)

    assert JobDB.update_progress(test_db_session, job.job_id, 40) is True
    assert JobDB.update_progress(test_db_session, job.job_id, 20) is False
    assert JobDB.update_progress(test_db_session, job.job_id, 250) is True

    assert JobDB.get_job(test_db_session, job.job_id, refresh=True).progress == 100


def test_update_progress_ignores_queued_jobs(test_db_session, make_job):
    job = make_job(test_db_session)

    assert JobDB.update_progress(test_db_session, job.job_id, 30) is False
    assert JobDB.get_job(test_db_session, job.job_id, refresh=True).progress == 0


def test_update_fields_checks_status(test_db_session, make_job):
    job = _processing_job(test_db_session, make_job)

    assert JobDB.update_fields(test_db_session, job.job_id, "processing", provider_job_id="gen_1")
    assert not JobDB.update_fields(test_db_session, job.job_id, "queued", provider_job_id="gen_2")
    assert JobDB.get_job(test_db_session, job.job_id, refresh=True).provider_job_id == "gen_1"


def test_get_user_job_scopes_by_owner(test_db_session, make_job):
    job = make_job(test_db_session)

    assert JobDB.get_user_job(test_db_session, job.job_id, "user-1") is not None
    assert JobDB.get_user_job(test_db_session, job.job_id, "user-2") is None


def test_claim_persist_is_exclusive(test_db_session, make_job):
    job = _processing_job(test_db_session, make_job)

    assert JobDB.claim_persist(test_db_session, job.job_id, "token-a") is True
    assert JobDB.claim_persist(test_db_session, job.job_id, "token-b") is False

    JobDB.release_persist(test_db_session, job.job_id, "token-a")
    assert JobDB.claim_persist(test_db_session, job.job_id, "token-b") is True


def test_claim_persist_reclaims_expired_lease(test_db_session, make_job):
    job = _processing_job(test_db_session, make_job)
    assert JobDB.claim_persist(test_db_session, job.job_id, "token-a")

    test_db_session.query(JobModel).filter(JobModel.job_id == job.job_id).update(
        {"persist_claimed_at": datetime.utcnow() - timedelta(hours=1)}
    )
    test_db_session.commit()

    assert JobDB.claim_persist(test_db_session, job.job_id, "token-b") is True


def test_claim_persist_rejects_queued_and_failed(test_db_session, make_job):
    queued = make_job(test_db_session)
    failed = _processing_job(test_db_session, make_job)
    transition_state(test_db_session, failed.job_id, "failed", "worker_failed", error="x")

    assert JobDB.claim_persist(test_db_session, queued.job_id, "t") is False
    assert JobDB.claim_persist(test_db_session, failed.job_id, "t") is False


def test_complete_persist_marks_job_and_creates_asset(test_db_session, make_job):
    job = _processing_job(test_db_session, make_job)
    JobDB.claim_persist(test_db_session, job.job_id, "token-a")

    updated = JobDB.complete_persist(
        test_db_session,
        job.job_id,
        "token-a",
        "https://media.test/mediaforge/outputs/user-1/a.png",
        "mediaforge/outputs/user-1/a.png",
        _asset(job.job_id),
    )

    assert updated is not None
    assert updated.status == "completed"
    assert updated.progress == 100
    assert updated.provider_persisted is True
    assert updated.persist_token is None
    assert updated.completed_at is not None
    assert updated.state_transitions[-1]["event"] == "job_completed"
    assert AssetDB.count_for_job(test_db_session, job.job_id) == 1


def test_complete_persist_with_lost_claim(test_db_session, make_job):
    job = _processing_job(test_db_session, make_job)
    JobDB.claim_persist(test_db_session, job.job_id, "token-a")

    result = JobDB.complete_persist(
        test_db_session, job.job_id, "token-stale", "https://x", None, _asset(job.job_id)
    )

    assert result is None
    assert AssetDB.count_for_job(test_db_session, job.job_id) == 0
    assert JobDB.get_job(test_db_session, job.job_id, refresh=True).status == "processing"


def test_complete_persist_rolls_back_on_duplicate_asset(test_db_session, make_job):
    job = _processing_job(test_db_session, make_job)
    test_db_session.add(_asset(job.job_id))
    test_db_session.commit()
    JobDB.claim_persist(test_db_session, job.job_id, "token-a")

    result = JobDB.complete_persist(
        test_db_session, job.job_id, "token-a", "https://x", None, _asset(job.job_id)
    )

    assert result is None
    reloaded = JobDB.get_job(test_db_session, job.job_id, refresh=True)
    assert reloaded.provider_persisted is False
    assert reloaded.status == "processing"
    assert AssetDB.count_for_job(test_db_session, job.job_id) == 1


def test_list_stale_queued(test_db_session, make_job):
    old = make_job(test_db_session)
    fresh = make_job(test_db_session)
    claimed = make_job(test_db_session)
    transition_state(test_db_session, claimed.job_id, "processing", "worker_claimed")

    test_db_session.query(JobModel).filter(JobModel.job_id.in_([old.job_id, claimed.job_id])).update(
        {"created_at": datetime.utcnow() - timedelta(minutes=10)},
        synchronize_session=False,
    )
    test_db_session.commit()

    stale = JobDB.list_stale_queued(test_db_session, older_than_s=60)

    assert [job.job_id for job in stale] == [old.job_id]
    assert fresh.job_id not in [job.job_id for job in stale]
