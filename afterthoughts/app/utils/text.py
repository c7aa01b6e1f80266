from __future__ import annotations

PREVIEW_MAX_LINES = 2
PREVIEW_MAX_CHARS = 150
ELLIPSIS = "..."


def entry_preview(
    content: str | None,
    *,
    max_lines: int = PREVIEW_MAX_LINES,
    max_chars: int = PREVIEW_MAX_CHARS,
) -> str:
    """列表预览：取前两行，再硬截断到 150 字符（超出时追加 "..."）。"""
    # 只按换行符分行；其他 Unicode 行分隔符属于正文
    lines = (content or "").replace("\r\n", "\n").split("\n")
    text = "\n".join(lines[:max_lines])
    if len(text) > max_chars:
        return f"{text[:max_chars]}{ELLIPSIS}"
    return text


def is_blank(value: str | None) -> bool:
    return not (value or "").strip()
