"""Pydantic schema 定义。"""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from .generator import DEFAULT_ALPHABET, class_alphabets
from .hashing import SUPPORTED_ALGORITHMS

MAX_PASSWORD_LENGTH = 1024

PasswordStorage = Literal["none", "memory", "permanent"]


def _toggled_alphabet(settings: "Profile | ProfileSettings") -> str:
    return "".join(
        class_alphabets(
            upper=settings.char_upper,
            lower=settings.char_lower,
            digits=settings.char_digits,
            symbols=settings.char_symbols,
        )
    )


class Profile(BaseModel):
    """Immutable snapshot of a profile handed to the generator."""

    id: int = Field(..., ge=1, description="配置 ID")
    name: str = Field(..., description="配置名称")
    hash_algorithm: str = Field(default="sha256", description="哈希算法")
    length: int = Field(default=8, ge=1, description="生成密码长度")
    custom: bool = Field(default=False, description="是否使用自定义字符表")
    alphabet: str = Field(default=DEFAULT_ALPHABET, description="可用字符表")
    char_upper: bool = Field(default=True, description="大写字母")
    char_lower: bool = Field(default=True, description="小写字母")
    char_digits: bool = Field(default=True, description="数字")
    char_symbols: bool = Field(default=True, description="符号")
    mix_classes: bool = Field(default=False, description="每类字符至少出现一次")

    model_config = {"from_attributes": True, "frozen": True}

    @model_validator(mode="after")
    def _sync_alphabet(self) -> "Profile":
        # Frozen model: rows whose toggles and alphabet disagree follow the toggles.
        if not self.custom:
            object.__setattr__(self, "alphabet", _toggled_alphabet(self))
        return self


class ProfileSettings(BaseModel):
    hash_algorithm: str = Field(default="sha256", description="md5、sha1 或 sha256")
    length: int = Field(default=8, ge=1, le=MAX_PASSWORD_LENGTH, description="生成密码长度")
    custom: bool = Field(default=False, description="是否使用自定义字符表")
    alphabet: str = Field(default=DEFAULT_ALPHABET, description="自定义字符表")
    char_upper: bool = Field(default=True)
    char_lower: bool = Field(default=True)
    char_digits: bool = Field(default=True)
    char_symbols: bool = Field(default=True)
    mix_classes: bool = Field(default=False)

    @field_validator("hash_algorithm")
    @classmethod
    def _validate_algorithm(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in SUPPORTED_ALGORITHMS:
            raise ValueError("仅支持 md5、sha1 或 sha256")
        return normalized

    @model_validator(mode="after")
    def _derive_alphabet(self) -> "ProfileSettings":
        if not self.custom:
            self.alphabet = _toggled_alphabet(self)
        return self


class ProfileCreate(ProfileSettings):
    name: str | None = Field(default=None, description="配置名称，可为空自动生成")

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str | None) -> str | None:
        if value is None:
            return None
        stripped = value.strip()
        return stripped or None


class ProfileUpdate(ProfileSettings):
    name: str = Field(..., description="配置名称")

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("配置名称不能为空")
        return stripped


class LastUsed(BaseModel):
    profile_id: int = Field(..., ge=1, description="最近使用的配置 ID")


class PasswordStorageSetting(BaseModel):
    mode: PasswordStorage = Field(..., description="主密码保存方式")


def _normalize_domain(value: str) -> str:
    normalized = value.strip().lower()
    if not normalized:
        raise ValueError("域名不能为空")
    return normalized


class DomainSettings(BaseModel):
    domain: str
    profile_id: int
    substitute: str


class DomainSettingsUpdate(BaseModel):
    profile_id: int | None = Field(default=None, ge=1, description="绑定的配置 ID")
    substitute: str | None = Field(default=None, description="参与计算的替代域名")

    @field_validator("substitute")
    @classmethod
    def _normalize_substitute(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _normalize_domain(value)


class GenerateRequest(BaseModel):
    domain: str = Field(..., description="站点域名")
    master_password: str = Field(..., description="主密码")
    profile_id: int | None = Field(default=None, ge=1, description="配置 ID，为空时使用域名绑定的配置")

    @field_validator("domain")
    @classmethod
    def _check_domain(cls, value: str) -> str:
        return _normalize_domain(value)

    @field_validator("master_password")
    @classmethod
    def _validate_master_password(cls, value: str) -> str:
        if not value:
            raise ValueError("主密码不能为空")
        return value


class GenerateResult(BaseModel):
    profile_id: int
    domain: str
    password: str
