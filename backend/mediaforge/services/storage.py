"""
Storage Service - Database operations for Jobs and Assets

Every mutation of a job row after creation is a single conditional
``UPDATE ... WHERE`` whose row count tells the caller whether it won.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mediaforge.config.constants import PERSIST_CLAIM_LEASE_S
from mediaforge.models.asset import AssetModel
from mediaforge.models.job import JobModel, JobStatus


def _transition_entry(state: str, event: str, ts: datetime) -> Dict[str, Any]:
    return {"state": state, "timestamp": ts.isoformat(), "event": event}


def _append_transition(db: Session, job_id: str, state: str, event: str, ts: datetime) -> None:
    job = db.query(JobModel).populate_existing().filter(JobModel.job_id == job_id).first()
    if job is not None:
        transitions = list(job.state_transitions or [])
        transitions.append(_transition_entry(state, event, ts))
        job.state_transitions = transitions


class JobDB:
    """Job database operations"""

    @staticmethod
    def create_job(db: Session, job: JobModel) -> JobModel:
        """Insert a new job in the queued state"""
        now = datetime.utcnow()
        if not job.job_id:
            job.job_id = JobModel.generate_job_id()
        job.status = JobStatus.QUEUED.value
        job.progress = 0
        job.result_ref = None
        job.provider_persisted = False
        if job.params is None:
            job.params = {}
        job.created_at = now
        job.updated_at = now
        job.state_transitions = [_transition_entry(JobStatus.QUEUED.value, "job_created", now)]
        db.add(job)
        db.commit()
        db.refresh(job)
        return job

    @staticmethod
    def get_job(db: Session, job_id: str, refresh: bool = False) -> Optional[JobModel]:
        """Get job by ID; ``refresh`` drops cached state so concurrent writes are visible"""
        if refresh:
            db.expire_all()
        return db.query(JobModel).filter(JobModel.job_id == job_id).first()

    @staticmethod
    def get_user_job(db: Session, job_id: str, user_id: str) -> Optional[JobModel]:
        """Get a job only if it belongs to the given user"""
        return (
            db.query(JobModel)
            .filter(JobModel.job_id == job_id, JobModel.user_id == user_id)
            .first()
        )

    @staticmethod
    def transition(
        db: Session,
        job_id: str,
        from_states: Iterable[str],
        new_state: str,
        event: str,
        **fields: Any,
    ) -> Optional[JobModel]:
        """
        Move a job to ``new_state`` only if its current status is in ``from_states``

        Returns:
            The updated job when this call won the race, None otherwise
        """
        now = datetime.utcnow()
        values: Dict[str, Any] = dict(fields)
        values["status"] = new_state
        values["updated_at"] = now
        if new_state == JobStatus.PROCESSING.value:
            values.setdefault("started_at", now)
        elif new_state == JobStatus.COMPLETED.value:
            values.setdefault("completed_at", now)
        elif new_state in (JobStatus.FAILED.value, JobStatus.CANCELED.value):
            values.setdefault("failed_at", now)

        updated = (
            db.query(JobModel)
            .filter(JobModel.job_id == job_id, JobModel.status.in_(list(from_states)))
            .update(values, synchronize_session=False)
        )
        if updated != 1:
            db.rollback()
            return None

        _append_transition(db, job_id, new_state, event, now)
        db.commit()
        return JobDB.get_job(db, job_id)

    @staticmethod
    def update_fields(db: Session, job_id: str, expected_status: str, **fields: Any) -> bool:
        """Write non-status fields while the job is still in ``expected_status``"""
        values = dict(fields)
        values["updated_at"] = datetime.utcnow()
        updated = (
            db.query(JobModel)
            .filter(JobModel.job_id == job_id, JobModel.status == expected_status)
            .update(values, synchronize_session=False)
        )
        db.commit()
        return updated == 1

    @staticmethod
    def update_progress(db: Session, job_id: str, progress: int) -> bool:
        """Raise progress of a processing job; never lowers it"""
        progress = max(0, min(100, int(progress)))
        updated = (
            db.query(JobModel)
            .filter(
                JobModel.job_id == job_id,
                JobModel.status == JobStatus.PROCESSING.value,
                JobModel.progress < progress,
            )
            .update({"progress": progress, "updated_at": datetime.utcnow()}, synchronize_session=False)
        )
        db.commit()
        return updated == 1

    @staticmethod
    def claim_persist(db: Session, job_id: str, token: str) -> bool:
        """
        Take the persist-step claim for a job

        Only one caller at a time holds the claim; a claim older than the
        lease is treated as abandoned.
        """
        now = datetime.utcnow()
        lease_cutoff = now - timedelta(seconds=PERSIST_CLAIM_LEASE_S)
        updated = (
            db.query(JobModel)
            .filter(
                JobModel.job_id == job_id,
                JobModel.provider_persisted.is_(False),
                JobModel.status.in_([JobStatus.PROCESSING.value, JobStatus.COMPLETED.value]),
                or_(JobModel.persist_token.is_(None), JobModel.persist_claimed_at < lease_cutoff),
            )
            .update({"persist_token": token, "persist_claimed_at": now}, synchronize_session=False)
        )
        db.commit()
        return updated == 1

    @staticmethod
    def complete_persist(
        db: Session,
        job_id: str,
        token: str,
        result_ref: str,
        result_public_id: Optional[str],
        asset: AssetModel,
    ) -> Optional[JobModel]:
        """
        Mark the job completed and persisted and insert its Asset in one transaction

        Returns:
            The updated job, or None when the claim was lost or an Asset
            for this job already exists
        """
        now = datetime.utcnow()
        job = JobDB.get_job(db, job_id, refresh=True)
        was_processing = job is not None and job.status == JobStatus.PROCESSING.value

        updated = (
            db.query(JobModel)
            .filter(
                JobModel.job_id == job_id,
                JobModel.persist_token == token,
                JobModel.provider_persisted.is_(False),
                JobModel.status.in_([JobStatus.PROCESSING.value, JobStatus.COMPLETED.value]),
            )
            .update(
                {
                    "status": JobStatus.COMPLETED.value,
                    "progress": 100,
                    "result_ref": result_ref,
                    "result_public_id": result_public_id,
                    "provider_persisted": True,
                    "persist_token": None,
                    "persist_claimed_at": None,
                    "error": None,
                    "completed_at": func.coalesce(JobModel.completed_at, now),
                    "updated_at": now,
                },
                synchronize_session=False,
            )
        )
        if updated != 1:
            db.rollback()
            return None

        db.add(asset)
        _append_transition(
            db,
            job_id,
            JobStatus.COMPLETED.value,
            "job_completed" if was_processing else "result_persisted",
            now,
        )
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            return None
        return JobDB.get_job(db, job_id, refresh=True)

    @staticmethod
    def release_persist(db: Session, job_id: str, token: str) -> None:
        """Drop a persist claim after a failed attempt"""
        db.query(JobModel).filter(
            JobModel.job_id == job_id, JobModel.persist_token == token
        ).update({"persist_token": None, "persist_claimed_at": None}, synchronize_session=False)
        db.commit()

    @staticmethod
    def list_stale_queued(db: Session, older_than_s: int, limit: int = 100) -> List[JobModel]:
        """Jobs still queued after ``older_than_s`` seconds, oldest first"""
        cutoff = datetime.utcnow() - timedelta(seconds=older_than_s)
        return (
            db.query(JobModel)
            .filter(JobModel.status == JobStatus.QUEUED.value, JobModel.created_at < cutoff)
            .order_by(JobModel.created_at.asc())
            .limit(limit)
            .all()
        )


class AssetDB:
    """Asset database operations"""

    @staticmethod
    def get_by_source_job(db: Session, job_id: str) -> Optional[AssetModel]:
        return db.query(AssetModel).filter(AssetModel.source_job_id == job_id).first()

    @staticmethod
    def count_for_job(db: Session, job_id: str) -> int:
        return db.query(AssetModel).filter(AssetModel.source_job_id == job_id).count()
