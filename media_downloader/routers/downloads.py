"""下载任务 API 路由：批量创建任务、查询任务。"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from media_downloader.models.job import JobStatus
from media_downloader.schemas.job import DownloadRequest, JobResponse
from media_downloader.services.orchestrator import Orchestrator

router = APIRouter(prefix="/api/downloads", tags=["downloads"])


def get_orchestrator(request: Request) -> Orchestrator:
    """FastAPI 依赖注入：返回应用级编排器实例。"""
    return request.app.state.orchestrator


@router.post("", response_model=list[JobResponse], status_code=201)
async def create_downloads(
    body: DownloadRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> list[JobResponse]:
    """
    为每个 URL 创建一个下载任务，立即返回 pending 状态的任务列表。

    任务在后台并发执行，通过 SSE 端点获取实时进度。
    """
    jobs = await orchestrator.submit(body)
    return [JobResponse.model_validate(j) for j in jobs]


@router.get("", response_model=list[JobResponse])
async def list_downloads(
    status: Optional[JobStatus] = None,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> list[JobResponse]:
    """获取全部任务，可按状态过滤。"""
    return [JobResponse.model_validate(j) for j in orchestrator.list_jobs(status)]


@router.get("/{job_id}", response_model=JobResponse)
async def get_download(
    job_id: str,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> JobResponse:
    """根据任务 ID 获取任务详情。"""
    job = orchestrator.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail=f"任务 {job_id} 不存在")
    return JobResponse.model_validate(job)
