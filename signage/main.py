"""FastAPI 主入口"""
import asyncio
import sys
from contextlib import asynccontextmanager
from typing import Optional, Dict, Any, Union

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from loguru import logger

from .config import settings
from .services.asset_service import AssetMetadata, JsonAssetCatalog
from .scheduler import (
    SchedulerService,
    TimerPolicy,
    ScheduleEntry,
    ViewerDriver,
    ViewerState,
    SchedulerError,
    ValidationError,
    NotFound,
    DuplicateId,
    ResolutionInconsistency,
    instant_to_human,
)

VERSION = "0.1.0"

# 全局服务实例
asset_catalog: Optional[JsonAssetCatalog] = None
scheduler: Optional[SchedulerService] = None


def configure_logging(level: str) -> None:
    """设置 loguru 日志级别"""
    logger.remove()
    logger.add(sys.stderr, level=level)


@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: ARG001
    """应用生命周期管理"""
    global asset_catalog, scheduler

    configure_logging(settings.log_level)

    logger.info("=" * 50)
    logger.info("  Signage Scheduler")
    logger.info(f"  Data dir: {settings.data_dir}")
    logger.info(f"  Database: {settings.db_path}")
    logger.info(f"  Timezone: {settings.timezone}")
    logger.info("=" * 50)

    # 初始化素材目录
    asset_catalog = JsonAssetCatalog(settings.assets_path)
    await asset_catalog.initialize()

    # 初始化调度器（SQLite 状态 + JSON 导出）
    scheduler = SchedulerService(
        assets=asset_catalog,
        db_path=settings.db_path,
        json_path=settings.json_export_path,
        timezone=settings.timezone,
        max_future_items=settings.list_page_future_items,
        policy=TimerPolicy(
            safety_net_interval_ms=int(settings.safety_net_interval_seconds * 1000),
            retry_attempts=settings.timer_retry_attempts,
            retry_base_delay=settings.timer_retry_base_delay,
            retry_max_delay=settings.timer_retry_max_delay,
        ),
        auto_export_json=settings.auto_export_json,
    )

    # 启动调度器
    try:
        await scheduler.start()
        logger.info("Scheduler service started")
    except Exception as e:
        logger.error(f"Failed to start scheduler: {e}")

    logger.info(f"FastAPI docs: http://{settings.host}:{settings.port}/docs")
    logger.info(f"Viewer WebSocket: ws://{settings.host}:{settings.port}/ws/viewer")

    yield

    # 清理
    logger.info("Shutting down...")
    await scheduler.stop()
    scheduler = None
    asset_catalog = None
    logger.info("Goodbye!")


app = FastAPI(
    title="Signage Scheduler",
    description="Timed display assignments with live viewer transitions",
    version=VERSION,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============== Pydantic Models ==============

class ScheduleRequest(BaseModel):
    """创建/修改排期请求"""
    scheduled_at: Optional[Union[int, str]] = None
    asset_ref: Optional[str] = None


class AssetCreateRequest(BaseModel):
    """登记素材请求"""
    title: str
    id: Optional[str] = None
    category: str = ""
    background_color: str = "#000000"
    content_type: str = "image/png"
    uri: str = ""


# ============== Helpers ==============

def _require_scheduler() -> SchedulerService:
    if not scheduler:
        raise HTTPException(status_code=503, detail="Service not ready")
    return scheduler


def _require_assets() -> JsonAssetCatalog:
    if not asset_catalog:
        raise HTTPException(status_code=503, detail="Service not ready")
    return asset_catalog


def _http_error(e: SchedulerError) -> HTTPException:
    """把调度器异常映射为 HTTP 错误"""
    if isinstance(e, ValidationError):
        return HTTPException(status_code=422, detail=e.to_dict())
    if isinstance(e, NotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, DuplicateId):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, ResolutionInconsistency):
        return HTTPException(status_code=503, detail="Timeline needs restart")
    return HTTPException(status_code=400, detail=str(e))


async def _asset_or_none(asset_ref: str) -> Optional[Dict[str, Any]]:
    # Assets may be unregistered after scheduling; the entry still resolves
    if not asset_catalog:
        return None
    try:
        asset = await asset_catalog.resolve(asset_ref)
    except NotFound:
        return None
    return asset.to_dict()


def _entry_payload(entry: ScheduleEntry) -> Dict[str, Any]:
    tz = settings.timezone
    data = entry.to_dict()
    data["scheduled_at_human"] = instant_to_human(entry.scheduled_at_ms, tz)
    data["scheduled_at_short"] = instant_to_human(entry.scheduled_at_ms, tz, short=True)
    return data


async def _entry_with_asset(entry: Optional[ScheduleEntry]) -> Optional[Dict[str, Any]]:
    if entry is None:
        return None
    data = _entry_payload(entry)
    data["asset"] = await _asset_or_none(entry.asset_ref)
    return data


async def _viewer_message(msg_type: str, state: ViewerState) -> Dict[str, Any]:
    return {
        "type": msg_type,
        "state": state.kind.value,
        "instant_ms": state.instant_ms,
        "entry": await _entry_with_asset(state.entry),
    }


# ============== Health ==============

@app.get("/")
async def root():
    """根路径"""
    return {
        "name": "Signage Scheduler",
        "version": VERSION,
        "status": "running",
    }


@app.get("/health")
@app.get("/api/health")
async def health():
    """健康检查"""
    scheduler_status = {}
    if scheduler:
        status = await scheduler.status()
        scheduler_status = status.to_dict()

    return {
        "status": "ok",
        "version": VERSION,
        "scheduler": scheduler_status,
    }


@app.get("/api/status")
async def status():
    """系统状态"""
    scheduler_status = {}
    if scheduler:
        status = await scheduler.status()
        scheduler_status = status.to_dict()

    return {
        "data_dir": str(settings.data_dir),
        "timezone": settings.timezone,
        "list_page_future_items": settings.list_page_future_items,
        "version": VERSION,
        "scheduler": scheduler_status,
        "fault": str(scheduler.state.fault) if scheduler and scheduler.state.fault else None,
    }


# ============== Schedules API ==============

@app.get("/api/current")
async def current_schedules(max_future_items: Optional[int] = None):
    """当前排期：正在播放的条目 + 即将播放的条目"""
    svc = _require_scheduler()
    try:
        resolution = await svc.list_schedules(max_future_items)
    except SchedulerError as e:
        raise _http_error(e)

    return {
        "instant_ms": resolution.instant_ms,
        "active": await _entry_with_asset(resolution.active),
        "future": [await _entry_with_asset(e) for e in resolution.future],
    }


@app.get("/api/schedules")
async def list_schedules():
    """列出全部排期（按时间升序）"""
    svc = _require_scheduler()
    entries = await svc.list_all()
    return {
        "schedules": [_entry_payload(e) for e in entries],
        "total": len(entries),
    }


@app.get("/api/schedules/{entry_id}")
async def get_schedule(entry_id: str):
    """获取排期详情"""
    svc = _require_scheduler()
    entry = await svc.get(entry_id)
    if not entry:
        raise HTTPException(status_code=404, detail="Schedule not found")
    return await _entry_with_asset(entry)


@app.post("/api/schedules", status_code=201)
async def create_schedule(request: ScheduleRequest):
    """创建排期"""
    svc = _require_scheduler()
    try:
        entry = await svc.create(request.scheduled_at, request.asset_ref)
    except SchedulerError as e:
        raise _http_error(e)
    return _entry_payload(entry)


@app.put("/api/schedules/{entry_id}")
async def update_schedule(entry_id: str, request: ScheduleRequest):
    """修改排期（时间和素材整体替换）"""
    svc = _require_scheduler()
    try:
        entry = await svc.update(entry_id, request.scheduled_at, request.asset_ref)
    except SchedulerError as e:
        raise _http_error(e)
    return _entry_payload(entry)


@app.delete("/api/schedules/{entry_id}")
async def delete_schedule(entry_id: str):
    """删除排期"""
    svc = _require_scheduler()
    try:
        entry = await svc.delete(entry_id)
    except SchedulerError as e:
        raise _http_error(e)
    return {"success": True, "deleted": entry.id}


# ============== Assets API ==============

@app.get("/api/assets")
async def list_assets():
    """列出素材"""
    catalog = _require_assets()
    assets = await catalog.list()
    return {
        "assets": [a.to_dict() for a in assets],
        "total": len(assets),
    }


@app.get("/api/assets/{asset_id}")
async def get_asset(asset_id: str):
    """获取素材详情"""
    catalog = _require_assets()
    try:
        asset = await catalog.resolve(asset_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Asset not found")
    return asset.to_dict()


@app.post("/api/assets", status_code=201)
async def create_asset(request: AssetCreateRequest):
    """登记素材"""
    catalog = _require_assets()
    if not request.title.strip():
        raise HTTPException(status_code=422, detail={"fields": {"title": "is required"}})

    data = request.model_dump()
    asset = await catalog.register(AssetMetadata.from_dict(data))
    return asset.to_dict()


# ============== Viewer WebSocket ==============

async def _pump_viewer(websocket: WebSocket, viewer: ViewerDriver) -> None:
    """把显示状态变化推送给客户端"""
    async for state in viewer:
        await websocket.send_json(await _viewer_message("transition", state))


@app.websocket("/ws/viewer")
async def viewer_endpoint(websocket: WebSocket):
    """显示端 WebSocket：先发快照，之后推送切换"""
    await websocket.accept()

    if not scheduler:
        await websocket.close(code=1013, reason="Service not ready")
        return

    try:
        viewer = scheduler.subscribe()
    except ResolutionInconsistency:
        await websocket.close(code=1011, reason="Timeline needs restart")
        return

    pump: Optional[asyncio.Task] = None
    try:
        await websocket.send_json(await _viewer_message("snapshot", viewer.state))
        pump = asyncio.create_task(_pump_viewer(websocket, viewer))

        # 消息循环
        while True:
            message = await websocket.receive_json()
            if message.get("type") == "refresh":
                await viewer.refresh()
                await websocket.send_json(await _viewer_message("snapshot", viewer.state))

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"Viewer WebSocket error: {e}")
    finally:
        if pump:
            pump.cancel()
        viewer.close()


def main():
    """启动 FastAPI 服务"""
    import uvicorn

    uvicorn.run(
        "signage.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
