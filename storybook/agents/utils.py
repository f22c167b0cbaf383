"""Prompt 文本处理工具函数。"""
from __future__ import annotations

import re

_WHITESPACE_RE = re.compile(r"\s+")
# 与 URL 模板服务兼容的字符：字母数字、空白和常见标点
_URL_UNSAFE_RE = re.compile(r"[^\w\s.,!?-]")


def collapse_whitespace(text: str) -> str:
    """把换行与连续空白压缩成单个空格。"""
    return _WHITESPACE_RE.sub(" ", text or "").strip()


def strip_special_chars(text: str) -> str:
    return _URL_UNSAFE_RE.sub("", text or "").strip()


def truncate_at_word(text: str, limit: int, *, min_ratio: float = 0.8) -> str:
    """截断到 limit 个字符；若最后一个空格位置不低于 limit * min_ratio，则在该空格处截断。"""
    if limit <= 0:
        return ""
    if len(text) <= limit:
        return text

    cut = text[:limit].rstrip()
    last_space = cut.rfind(" ")
    if last_space > limit * min_ratio:
        cut = cut[:last_space]
    return cut.strip()


def truncate(text: str, limit: int) -> str:
    return text[:limit].strip() if len(text) > limit else text


def sanitize_prompt(text: str, *, max_chars: int | None = None) -> str:
    """图像生成前的最终清洗：压缩空白并按需硬截断。"""
    cleaned = collapse_whitespace(text)
    if max_chars is not None:
        cleaned = truncate(cleaned, max_chars)
    return cleaned
