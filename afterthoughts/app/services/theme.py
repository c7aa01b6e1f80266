"""暗色模式：进程级上下文对象 + 本地持久化键值存储"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any

from ..config import settings

logger = logging.getLogger(__name__)

DARK_MODE_KEY = "afterthoughts-dark-mode"


class PreferenceStore:
    """JSON 文件里的键值对（相当于浏览器的 localStorage）"""

    def __init__(self, path: Path):
        self.path = path
        self._lock = threading.Lock()

    def _read_all(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data: Any = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("[PREFS] Unreadable preferences file, ignoring: %s", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._read_all().get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._read_all()
            data[key] = value
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
            tmp.replace(self.path)


class ThemeContext:
    def __init__(self, store: PreferenceStore):
        self.store = store
        self.is_dark = False
        self._initialized = False

    @property
    def theme(self) -> str:
        return "dark" if self.is_dark else "light"

    def init(self) -> None:
        self.is_dark = bool(self.store.get(DARK_MODE_KEY, False))
        self._initialized = True

    def set_dark(self, value: bool) -> None:
        self.is_dark = bool(value)
        self.store.set(DARK_MODE_KEY, self.is_dark)

    def toggle(self) -> bool:
        if not self._initialized:
            self.init()
        self.set_dark(not self.is_dark)
        return self.is_dark

    def teardown(self) -> None:
        self._initialized = False


# 全局主题上下文（启动时 init，关闭时 teardown）
theme_context = ThemeContext(PreferenceStore(settings.resolve_preferences_path()))
