# models/job_run.py
"""
JobRun model - one row per scheduled job and period.
"""
from sqlalchemy import Column, Integer, String, DateTime, JSON, UniqueConstraint
from models.base import Base

JOB_RUNNING = "running"
JOB_FINISHED = "finished"
JOB_FAILED = "failed"


class JobRun(Base):
    __tablename__ = 'job_runs'

    jobRunID = Column(Integer, primary_key=True, autoincrement=True)
    jobName = Column(String, nullable=False)
    periodKey = Column(String, nullable=False)  # YYYY-MM-DD или YYYY-Www

    status = Column(String, default=JOB_RUNNING)
    summary = Column(JSON, nullable=True)

    startedAt = Column(DateTime, nullable=True)
    finishedAt = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint('jobName', 'periodKey', name='uq_job_period'),
    )

    def __repr__(self):
        return f"<JobRun(job={self.jobName}, period={self.periodKey}, status={self.status})>"
