"""FastAPI 应用入口，注册路由、组装编排器、生命周期管理。"""

import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from media_downloader.config import Settings, settings as default_settings
from media_downloader.routers import downloads, sse
from media_downloader.services.orchestrator import Orchestrator
from media_downloader.services.registry import JobRegistry
from media_downloader.workers.queue import EventQueue

VERSION = "1.0.0"


def configure_logging(level: str) -> None:
    """按配置的级别重设 loguru 输出。"""
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    创建应用实例。

    参数：
        settings: 应用配置，默认使用模块级 settings
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """应用生命周期管理：启动时组装编排器，关闭时取消运行中的任务。"""
        configure_logging(settings.log_level)
        logger.info("启动媒体下载服务...")

        # 确保下载目录存在
        settings.downloads_path.mkdir(parents=True, exist_ok=True)

        event_queue = EventQueue(settings.event_queue_size, settings.sse_heartbeat_seconds)
        app.state.settings = settings
        app.state.event_queue = event_queue
        app.state.orchestrator = Orchestrator(JobRegistry(), event_queue, settings)
        logger.info(f"下载目录: {settings.downloads_path.resolve()}")
        logger.info(f"服务启动成功，访问 http://{settings.app_host}:{settings.app_port}")

        yield

        logger.info("服务关闭中...")
        await app.state.orchestrator.shutdown()

    app = FastAPI(
        title="Media Downloader",
        description="基于 yt-dlp 的批量媒体下载服务，实时推送任务进度",
        version=VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 注册 API 路由
    app.include_router(downloads.router)
    app.include_router(sse.router)

    @app.get("/health")
    async def health() -> dict:
        """健康检查端点。"""
        return {
            "status": "ok",
            "version": VERSION,
            "active_jobs": app.state.orchestrator.active_count,
        }

    return app


app = create_app()


def run() -> None:
    """命令行入口：使用 uvicorn 启动服务。"""
    import uvicorn

    uvicorn.run(
        "media_downloader.main:app",
        host=default_settings.app_host,
        port=default_settings.app_port,
        reload=default_settings.debug,
    )


if __name__ == "__main__":
    run()
