"""
@PURPOSE: 会话快照模型与持久化, 兼容 Playwright storage_state 格式
@OUTLINE:
  - class CookieRecord: 单条 Cookie
  - class StorageEntry / OriginStorage: 某个 origin 的 localStorage
  - class SessionState: 不可变的会话快照
    - def from_storage_state(): 从 storage_state 字典构建
    - async def capture(): 从 BrowserContext 采集快照
    - def to_storage_state(): 转换为 storage_state 字典
    - def is_expired(): 按保存时间与 Cookie 过期时间判断是否过期
    - def has_consent_marker(): 是否带有同意标记
  - class SessionStateStore: 快照文件读写
    - def load() / load_valid() / save() / clear() / describe()
  - class SessionSnapshot: 测试会话内"先加载, 最多写一次"的复用策略
@GOTCHAS:
  - 快照文件本身就是 Playwright storage_state JSON, 可直接传给 new_context(storage_state=...)
  - 保存时间写入同名 .meta.json 文件, 缺失时回退到文件修改时间
  - 主快照缺失时会先从种子快照复制一份
  - 模型是冻结的, 测试过程中不会被修改
@DEPENDENCIES:
  - 外部: pydantic, loguru
  - 内部: catawiki_e2e.errors
@RELATED: consent_bootstrapper.py, browser_manager.py
"""

import json
import re
import shutil
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import SessionStateError

STORAGE_STATE_FORMAT = "playwright-storage-state"


class CookieRecord(BaseModel):
    """单条 Cookie, 字段别名与 Playwright 一致."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    name: str
    value: str
    domain: str = ""
    path: str = "/"
    expires: float = -1
    http_only: bool = Field(default=False, alias="httpOnly")
    secure: bool = False
    same_site: str = Field(default="Lax", alias="sameSite")

    @property
    def is_session(self) -> bool:
        """会话 Cookie(浏览器关闭即失效)."""
        return self.expires < 0

    def is_expired_at(self, now: datetime) -> bool:
        return not self.is_session and self.expires <= now.timestamp()


class StorageEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    value: str


class OriginStorage(BaseModel):
    """某个 origin 下的 localStorage 条目."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    origin: str
    local_storage: Tuple[StorageEntry, ...] = Field(default=(), alias="localStorage")


class SessionState(BaseModel):
    """会话快照: Cookie + localStorage.

    Attributes:
        cookies: Cookie 列表
        origins: 各 origin 的 localStorage
        saved_at: 采集或保存时间, 不写入 storage_state 主体

    Examples:
        >>> state = SessionState.from_storage_state({"cookies": [], "origins": []})
        >>> state.is_expired(timedelta(hours=24))
        True
    """

    model_config = ConfigDict(frozen=True)

    cookies: Tuple[CookieRecord, ...] = ()
    origins: Tuple[OriginStorage, ...] = ()
    saved_at: Optional[datetime] = None

    @classmethod
    def from_storage_state(
        cls, data: Dict[str, Any], saved_at: Optional[datetime] = None
    ) -> "SessionState":
        """从 Playwright storage_state 字典构建快照.

        Raises:
            ValidationError: 数据结构不符合 storage_state 格式
        """
        return cls.model_validate(
            {
                "cookies": data.get("cookies") or [],
                "origins": data.get("origins") or [],
                "saved_at": saved_at,
            }
        )

    @classmethod
    async def capture(cls, context: Any) -> "SessionState":
        """从 BrowserContext 采集当前 Cookie 与 localStorage."""
        data = await context.storage_state()
        return cls.from_storage_state(data or {}, saved_at=datetime.now())

    def to_storage_state(self) -> Dict[str, Any]:
        """转换为 Playwright storage_state 字典."""
        return self.model_dump(mode="json", by_alias=True, exclude={"saved_at"})

    def playwright_cookies(self) -> list[Dict[str, Any]]:
        """转换为 context.add_cookies() 接受的格式."""
        return [cookie.model_dump(by_alias=True) for cookie in self.cookies]

    def cookie_names(self) -> list[str]:
        return [cookie.name for cookie in self.cookies]

    def local_storage_keys(self) -> list[str]:
        return [entry.name for origin in self.origins for entry in origin.local_storage]

    def has_consent_marker(self, cookie_pattern: str, storage_pattern: str) -> bool:
        """快照中是否存在同意相关的 Cookie 或 localStorage 键."""
        cookie_re = re.compile(cookie_pattern, re.IGNORECASE)
        storage_re = re.compile(storage_pattern, re.IGNORECASE)
        if any(cookie_re.search(name) for name in self.cookie_names()):
            return True
        return any(storage_re.search(key) for key in self.local_storage_keys())

    def age(self, now: Optional[datetime] = None) -> Optional[timedelta]:
        if self.saved_at is None:
            return None
        return (now or datetime.now()) - self.saved_at

    def is_expired(self, max_age: timedelta, now: Optional[datetime] = None) -> bool:
        """判断快照是否过期.

        以下任一条件成立即视为过期:
        1. 保存时间早于 max_age
        2. 快照中没有任何 Cookie
        3. 所有非会话 Cookie 都已过期

        Args:
            max_age: 最大有效期
            now: 当前时间, 默认 datetime.now()

        Returns:
            True 表示不应再复用
        """
        now = now or datetime.now()

        age = self.age(now)
        if age is not None and age > max_age:
            return True

        if not self.cookies:
            return True

        persistent = [cookie for cookie in self.cookies if not cookie.is_session]
        if persistent and all(cookie.is_expired_at(now) for cookie in persistent):
            return True

        return False

    def with_saved_at(self, saved_at: datetime) -> "SessionState":
        return self.model_copy(update={"saved_at": saved_at})


class SessionStateStore:
    """会话快照文件管理器.

    Attributes:
        path: 快照文件路径
        max_age: 快照最大有效期
        seed_path: 种子快照路径, 主快照缺失时复制过来

    Examples:
        >>> store = SessionStateStore("data/auth/storage_state.json")
        >>> store.load_valid() is None
        True
    """

    METADATA_SUFFIX = ".meta.json"

    def __init__(
        self,
        path: str | Path,
        max_age_hours: float = 24,
        seed_path: str | Path | None = None,
    ):
        self.path = Path(path)
        self.max_age = timedelta(hours=max_age_hours)
        self.seed_path = Path(seed_path) if seed_path else None

    @classmethod
    def from_settings(cls, settings: Any) -> "SessionStateStore":
        """按 Settings.consent 中的路径与有效期创建."""
        consent = settings.consent
        seed = settings.get_absolute_path(consent.seed_state_path) if consent.seed_state_path else None
        return cls(
            settings.get_absolute_path(consent.session_state_path),
            max_age_hours=consent.max_age_hours,
            seed_path=seed,
        )

    @property
    def metadata_file(self) -> Path:
        """获取元数据文件路径."""
        return self.path.with_suffix(self.path.suffix + self.METADATA_SUFFIX)

    def exists(self) -> bool:
        return self.path.exists()

    def _seed_if_missing(self) -> None:
        """主快照不存在时从种子快照复制."""
        if self.path.exists() or self.seed_path is None or not self.seed_path.exists():
            return
        if self.seed_path.resolve() == self.path.resolve():
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        # 保留种子文件的修改时间
        shutil.copy2(self.seed_path, self.path)
        logger.info(f"已从种子快照复制会话: {self.seed_path} -> {self.path}")

    def _read_saved_at(self) -> datetime:
        if self.metadata_file.exists():
            try:
                with open(self.metadata_file, encoding="utf-8") as f:
                    metadata = json.load(f)
                return datetime.fromisoformat(metadata["timestamp"])
            except (OSError, ValueError, KeyError, TypeError) as exc:
                logger.warning(f"元数据文件无效, 使用文件修改时间: {exc}")
        return datetime.fromtimestamp(self.path.stat().st_mtime)

    def load(self) -> Optional[SessionState]:
        """加载快照(不判断是否过期).

        Returns:
            快照, 文件不存在时返回 None

        Raises:
            SessionStateError: 文件内容不是合法的 storage_state
        """
        self._seed_if_missing()
        if not self.path.exists():
            logger.info("会话快照不存在: {}", self.path)
            return None

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as exc:
            raise SessionStateError(self.path, f"JSON 解析失败: {exc}") from exc

        if not isinstance(data, dict):
            raise SessionStateError(self.path, f"顶层必须是对象, 当前类型: {type(data).__name__}")

        try:
            return SessionState.from_storage_state(data, saved_at=self._read_saved_at())
        except ValidationError as exc:
            raise SessionStateError(self.path, str(exc)) from exc

    def load_valid(self, now: Optional[datetime] = None) -> Optional[SessionState]:
        """加载未过期的快照, 缺失、损坏或过期时返回 None."""
        try:
            state = self.load()
        except SessionStateError as exc:
            logger.warning(f"忽略损坏的会话快照: {exc}")
            return None

        if state is None:
            return None

        if state.is_expired(self.max_age, now):
            age = state.age(now)
            hours = age.total_seconds() / 3600 if age else 0.0
            logger.info(f"会话快照已过期(已保存 {hours:.1f} 小时, {len(state.cookies)} 条 Cookie)")
            return None

        logger.success(f"会话快照有效({len(state.cookies)} 条 Cookie)")
        return state

    def is_valid(self) -> bool:
        return self.load_valid() is not None

    def save(self, state: SessionState) -> Path:
        """保存快照与元数据.

        Args:
            state: 会话快照

        Returns:
            快照文件路径
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)

        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(state.to_storage_state(), f, ensure_ascii=False, indent=2)

        self._save_metadata(state.saved_at or datetime.now())
        logger.info(f"会话快照已保存({len(state.cookies)} 条 Cookie): {self.path}")
        return self.path

    def _save_metadata(self, timestamp: datetime) -> None:
        """保存元数据文件(包含时间戳)."""
        metadata = {
            "timestamp": timestamp.isoformat(),
            "format": STORAGE_STATE_FORMAT,
        }
        with open(self.metadata_file, "w", encoding="utf-8") as f:
            json.dump(metadata, f, ensure_ascii=False, indent=2)

    def update_timestamp(self) -> None:
        """刷新保存时间(不改写快照内容)."""
        if not self.path.exists():
            logger.warning("会话快照不存在, 无法更新时间戳")
            return

        self._save_metadata(datetime.now())
        logger.debug("会话快照时间戳已更新")

    def clear(self) -> None:
        """删除快照与元数据."""
        for target in (self.path, self.metadata_file):
            if target.exists():
                target.unlink()
        logger.info(f"会话快照已清除: {self.path}")

    def describe(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """汇总快照状态(供 CLI 展示)."""
        info: Dict[str, Any] = {"path": str(self.path), "exists": self.path.exists()}
        if not info["exists"]:
            return info

        try:
            state = self.load()
        except SessionStateError as exc:
            info["error"] = exc.reason
            return info
        if state is None:
            return info

        age = state.age(now)
        info.update(
            {
                "saved_at": state.saved_at.isoformat() if state.saved_at else None,
                "age_hours": round(age.total_seconds() / 3600, 2) if age else None,
                "cookies": len(state.cookies),
                "origins": len(state.origins),
                "expired": state.is_expired(self.max_age, now),
            }
        )
        return info


class SessionSnapshot:
    """一次测试会话内的快照复用策略: 启动时加载, 结束时最多写入一次.

    只有在启动时没有有效快照, 并且某次非降级引导采集到了快照时才会写回文件.

    Examples:
        >>> snapshot = SessionSnapshot(store)
        >>> result = await bootstrapper.run(context, snapshot.state)
        >>> snapshot.offer(result.session_state)
        >>> snapshot.finalize()
    """

    def __init__(self, store: SessionStateStore, persist: bool = True):
        self.store = store
        self.persist = persist
        self.state: Optional[SessionState] = store.load_valid()
        self.valid_at_start = self.state is not None
        self._captured: Optional[SessionState] = None

    @property
    def captured(self) -> Optional[SessionState]:
        return self._captured

    def offer(self, state: Optional[SessionState]) -> None:
        """提交一次引导采集到的快照, 只接受第一份."""
        if state is None or self.valid_at_start or self._captured is not None:
            return
        self._captured = state
        self.state = state
        logger.debug(f"本次会话已采集快照({len(state.cookies)} 条 Cookie), 后续测试直接复用")

    def finalize(self) -> Optional[Path]:
        """会话结束时按需写回快照."""
        if not self.persist or self.valid_at_start or self._captured is None:
            return None
        return self.store.save(self._captured)
