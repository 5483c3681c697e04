"""任务注册表：进程内、线程安全的任务 ID → Job 映射。"""

import threading
from typing import Optional

from media_downloader.exceptions import JobStateError
from media_downloader.models.job import Job, JobStatus, STATUS_ORDER


class JobRegistry:
    """
    任务状态的唯一来源。

    每次更新都在锁内基于旧记录生成新记录再整体替换，读取方只会看到
    完整的快照。记录没有淘汰策略，随进程存活；长时间运行时内存会持续增长。
    """

    def __init__(self):
        self._jobs: dict[str, Job] = {}
        self._lock = threading.RLock()

    def add(self, job: Job) -> Job:
        """登记新任务，ID 冲突时抛出 JobStateError。"""
        with self._lock:
            if job.id in self._jobs:
                raise JobStateError(f"任务 {job.id} 已存在")
            self._jobs[job.id] = job
            return job.model_copy()

    def get(self, job_id: str) -> Optional[Job]:
        """按 ID 获取任务快照，不存在时返回 None。"""
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy() if job else None

    def list_jobs(self, status: Optional[JobStatus] = None) -> list[Job]:
        """返回全部任务快照（按创建顺序），可按状态过滤。"""
        with self._lock:
            return [
                job.model_copy() for job in self._jobs.values()
                if status is None or job.status == status
            ]

    def update(self, job_id: str, **changes) -> Job:
        """
        原子地修改任务字段并返回新快照。

        状态只能向前推进，终态不可再变；下载中进度不会降低。

        异常：
            KeyError: 任务不存在
            JobStateError: 非法状态变更
        """
        with self._lock:
            current = self._jobs[job_id]
            if current.status.is_terminal:
                raise JobStateError(f"任务 {job_id} 已处于终态 {current.status.value}")

            status = JobStatus(changes.get("status", current.status))
            if STATUS_ORDER[status] < STATUS_ORDER[current.status]:
                raise JobStateError(
                    f"任务 {job_id} 状态不能从 {current.status.value} 回退到 {status.value}"
                )
            if status == JobStatus.DOWNLOADING and "progress" in changes:
                changes["progress"] = max(current.progress, changes["progress"])

            updated = current.model_copy(update={**changes, "status": status})
            self._jobs[job_id] = updated
            return updated.model_copy()

    def __len__(self) -> int:
        """已登记的任务数量。"""
        with self._lock:
            return len(self._jobs)
