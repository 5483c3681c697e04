"""SSE 实时任务快照推送路由。"""

import asyncio
import json
from typing import AsyncGenerator, Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse
from loguru import logger

router = APIRouter(prefix="/api/events", tags=["sse"])

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.get("")
async def all_job_events(request: Request) -> StreamingResponse:
    """
    SSE 端点：推送所有任务的快照，直到客户端断开。

    客户端使用 EventSource('GET /api/events') 监听。
    """
    return StreamingResponse(
        _event_generator(None, request),
        media_type="text/event-stream",
        headers=_SSE_HEADERS,
    )


@router.get("/{job_id}")
async def job_events(job_id: str, request: Request) -> StreamingResponse:
    """SSE 端点：推送单个任务的快照，任务进入终态后结束。"""
    if not request.app.state.orchestrator.get_job(job_id):
        raise HTTPException(status_code=404, detail=f"任务 {job_id} 不存在")
    return StreamingResponse(
        _event_generator(job_id, request),
        media_type="text/event-stream",
        headers=_SSE_HEADERS,
    )


async def _event_generator(job_id: Optional[str], request: Request) -> AsyncGenerator[str, None]:
    """生成 SSE 事件流，监听客户端断开连接。"""
    label = job_id or "*"
    logger.info(f"SSE 连接建立 job_id={label}")

    # 发送初始连接确认
    yield format_sse({"type": "connected", "job_id": job_id})

    orchestrator = request.app.state.orchestrator
    snapshot = (lambda: orchestrator.get_job(job_id)) if job_id else None
    try:
        async for event in request.app.state.event_queue.stream(job_id, snapshot):
            # 检查客户端是否已断开
            if await request.is_disconnected():
                logger.info(f"SSE 客户端断开 job_id={label}")
                break

            yield format_sse(event)

    except asyncio.CancelledError:
        pass
    finally:
        logger.info(f"SSE 连接关闭 job_id={label}")


def format_sse(data: dict) -> str:
    """将字典格式化为 SSE 数据帧字符串。"""
    return f"data: {json.dumps(data, ensure_ascii=False)}\n\n"
