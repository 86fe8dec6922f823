"""FastAPI 应用，提供站点密码生成与配置管理接口。"""
from __future__ import annotations

from typing import Any, TypeVar
from urllib.parse import parse_qsl

from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError

from .deps import get_store
from .generator import EmptyAlphabet, derive
from .hashing import UnsupportedAlgorithm
from .logger import setup_logger
from .models import Base, engine
from .schemas import (
    DomainSettings,
    DomainSettingsUpdate,
    GenerateRequest,
    GenerateResult,
    LastUsed,
    PasswordStorageSetting,
    Profile,
    ProfileCreate,
    ProfileUpdate,
)
from .store import DuplicateProfileName, ProfileNotFound, ProfileStore

logger = setup_logger("sitepass.api")

PayloadT = TypeVar("PayloadT", bound=BaseModel)

app = FastAPI(
    title="Sitepass API",
    description="根据主密码、域名与配置确定性地生成站点密码，并管理生成配置。",
    version="0.1.0",
    docs_url=None,
    redoc_url=None,
)
app.state.store = ProfileStore()


@app.on_event("startup")
def ensure_tables() -> None:
    """应用启动时创建数据库表并确保存在默认配置。"""

    try:
        Base.metadata.create_all(bind=engine)
        app.state.store.ensure_default_profile()
    except SQLAlchemyError as exc:  # pragma: no cover - 依赖数据库环境
        raise RuntimeError("数据库表结构初始化失败") from exc


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """为 404/409 返回统一结构，方便调用方解析。"""

    headers = exc.headers or None
    if exc.status_code in {status.HTTP_404_NOT_FOUND, status.HTTP_409_CONFLICT}:
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=headers)
    return JSONResponse({"detail": exc.detail}, status_code=exc.status_code, headers=headers)


@app.exception_handler(ProfileNotFound)
async def profile_not_found_handler(request: Request, exc: ProfileNotFound) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=status.HTTP_404_NOT_FOUND)


@app.exception_handler(DuplicateProfileName)
async def duplicate_name_handler(request: Request, exc: DuplicateProfileName) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=status.HTTP_409_CONFLICT)


@app.exception_handler(UnsupportedAlgorithm)
@app.exception_handler(EmptyAlphabet)
async def generation_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    """配置无法生成密码时提示调用方修改配置。"""

    logger.warning("password generation failed: %s", exc)
    return JSONResponse(
        {"error": str(exc)}, status_code=status.HTTP_422_UNPROCESSABLE_ENTITY
    )


def _decode_urlencoded_form(body: bytes, charset: str = "utf-8") -> dict[str, Any]:
    """解析 application/x-www-form-urlencoded 请求体。"""

    try:
        text = body.decode(charset)
    except UnicodeDecodeError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="表单内容解码失败") from exc
    return {key: value for key, value in parse_qsl(text, keep_blank_values=False)}


async def _read_form_data(request: Request, content_type: str) -> dict[str, Any]:
    """读取表单数据，在缺失 python-multipart 时优雅降级。"""

    if content_type.startswith("application/x-www-form-urlencoded"):
        charset = "utf-8"
        if "charset=" in content_type:
            charset = content_type.split("charset=")[-1].split(";")[0].strip() or "utf-8"
        body = await request.body()
        return _decode_urlencoded_form(body, charset=charset)

    try:
        form = await request.form()
    except AssertionError as exc:  # python-multipart 未安装
        raise HTTPException(
            status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail="缺少 python-multipart 依赖，无法解析表单上传",
        ) from exc
    return {key: value for key, value in form.multi_items()}


async def _parse_payload(request: Request, model: type[PayloadT]) -> PayloadT:
    """解析请求载荷，兼容 JSON 与表单提交。"""

    content_type = request.headers.get("content-type", "").lower()
    data: dict[str, Any]
    if content_type.startswith("application/json"):
        data = await request.json()
    else:
        data = await _read_form_data(request, content_type)
    if not isinstance(data, dict):
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, detail="请求体必须为对象")

    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise HTTPException(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=exc.errors(include_url=False, include_context=False),
        ) from exc


async def _parse_profile_create_payload(request: Request) -> ProfileCreate:
    return await _parse_payload(request, ProfileCreate)


async def _parse_profile_update_payload(request: Request) -> ProfileUpdate:
    return await _parse_payload(request, ProfileUpdate)


async def _parse_generate_payload(request: Request) -> GenerateRequest:
    return await _parse_payload(request, GenerateRequest)


def _normalize_domain_path(domain: str) -> str:
    normalized = domain.strip().lower()
    if not normalized:
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, detail="域名不能为空")
    return normalized


@app.get("/healthz")
def healthz() -> dict[str, bool]:
    """健康检查端点。"""

    return {"ok": True}


@app.get("/api/profiles", response_model=list[Profile])
def list_profiles(store: ProfileStore = Depends(get_store)) -> list[Profile]:
    """列出全部配置，按 ID 排序。"""

    return store.list_profiles()


@app.post("/api/profiles", response_model=Profile, status_code=status.HTTP_201_CREATED)
async def create_profile(
    payload: ProfileCreate = Depends(_parse_profile_create_payload),
    store: ProfileStore = Depends(get_store),
) -> Profile:
    """创建配置，名称可空自动生成。"""

    return store.add_profile(payload)


@app.get("/api/profiles/last-used", response_model=LastUsed)
def get_last_used(store: ProfileStore = Depends(get_store)) -> LastUsed:
    return LastUsed(profile_id=store.last_used())


@app.put("/api/profiles/last-used", response_model=LastUsed)
def set_last_used(payload: LastUsed, store: ProfileStore = Depends(get_store)) -> LastUsed:
    """标记最近使用的配置。"""

    if not store.has_profile(payload.profile_id):
        raise ProfileNotFound(payload.profile_id)
    store.update_last_used(payload.profile_id)
    return LastUsed(profile_id=store.last_used())


@app.get("/api/profiles/{profile_id}", response_model=Profile)
def get_profile(profile_id: int, store: ProfileStore = Depends(get_store)) -> Profile:
    return store.get_profile(profile_id)


@app.put("/api/profiles/{profile_id}", response_model=Profile)
async def update_profile(
    profile_id: int,
    payload: ProfileUpdate = Depends(_parse_profile_update_payload),
    store: ProfileStore = Depends(get_store),
) -> Profile:
    """更新指定配置。"""

    return store.update_profile(profile_id, payload)


@app.delete("/api/profiles/{profile_id}")
def delete_profile(profile_id: int, store: ProfileStore = Depends(get_store)) -> Response:
    """删除指定配置；删除最后一个配置时自动重建默认配置。"""

    store.delete_profile(profile_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/api/profiles/{profile_id}/password")
def recall_master_password(
    profile_id: int, store: ProfileStore = Depends(get_store)
) -> dict[str, Any]:
    """返回按保存方式记住的主密码。"""

    if not store.has_profile(profile_id):
        raise ProfileNotFound(profile_id)
    password = store.recall_password(profile_id)
    if password is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="未保存主密码")
    return {"profile_id": profile_id, "master_password": password}


@app.get("/api/settings/password-storage", response_model=PasswordStorageSetting)
def get_password_storage(store: ProfileStore = Depends(get_store)) -> PasswordStorageSetting:
    return PasswordStorageSetting(mode=store.password_storage())


@app.put("/api/settings/password-storage", response_model=PasswordStorageSetting)
def set_password_storage(
    payload: PasswordStorageSetting, store: ProfileStore = Depends(get_store)
) -> PasswordStorageSetting:
    """切换主密码保存方式：none、memory 或 permanent。"""

    store.set_password_storage(payload.mode)
    return PasswordStorageSetting(mode=store.password_storage())


@app.get("/api/domains/{domain}", response_model=DomainSettings)
def get_domain_settings(domain: str, store: ProfileStore = Depends(get_store)) -> DomainSettings:
    return store.domain_settings(_normalize_domain_path(domain))


@app.put("/api/domains/{domain}", response_model=DomainSettings)
def update_domain_settings(
    domain: str,
    payload: DomainSettingsUpdate,
    store: ProfileStore = Depends(get_store),
) -> DomainSettings:
    """绑定域名使用的配置或替代域名。"""

    normalized = _normalize_domain_path(domain)
    if payload.profile_id is not None:
        store.update_domain_profile(normalized, payload.profile_id)
    if "substitute" in payload.model_fields_set:
        store.update_domain_substitute(normalized, payload.substitute)
    return store.domain_settings(normalized)


@app.post("/api/generate", response_model=GenerateResult)
async def generate_password(
    payload: GenerateRequest = Depends(_parse_generate_payload),
    store: ProfileStore = Depends(get_store),
) -> GenerateResult:
    """为域名生成密码；替代域名存在时以替代域名参与计算。"""

    settings = store.domain_settings(payload.domain)
    profile = store.get_profile(payload.profile_id or settings.profile_id)

    password = derive(profile, settings.substitute, payload.master_password)

    store.remember_password(profile.id, payload.master_password)
    store.update_last_used(profile.id)
    store.update_domain_profile(payload.domain, profile.id)
    logger.info(
        "generated %s-character password for %s with profile %s",
        profile.length,
        payload.domain,
        profile.id,
    )
    return GenerateResult(profile_id=profile.id, domain=payload.domain, password=password)
