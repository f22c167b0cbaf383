"""URL 模板图像服务（Pollinations）

prompt 编码进路径段，生成的 URL 本身就是图片地址，无需额外请求；
超长时按完整编码字符截断，不会抛错。
"""

from __future__ import annotations

import logging
from urllib.parse import quote, urlencode

from storybook.agents.utils import collapse_whitespace
from storybook.config import Settings
from storybook.services.providers import ImageParams

logger = logging.getLogger(__name__)

# 与浏览器 encodeURIComponent 保持一致的保留字符
_SAFE_CHARS = "!~*'()"
_ENCODED_SPACE = "%20"


def encode_prompt(prompt: str) -> str:
    return quote(prompt, safe=_SAFE_CHARS)


def truncate_encoded(prompt: str, max_encoded_length: int) -> str:
    """按字符逐个编码，返回长度不超过 max_encoded_length 的编码串。

    只在完整字符边界截断（多字节字符的 %XX 序列不会被拆开），
    若截断发生，优先截在最后一个空格之前。
    """
    if max_encoded_length <= 0:
        return ""

    pieces: list[str] = []
    length = 0
    last_space_end: int | None = None
    truncated = False
    for char in prompt:
        encoded = encode_prompt(char)
        if length + len(encoded) > max_encoded_length:
            # 恰好停在空格上时，前面已是完整单词
            truncated = encoded != _ENCODED_SPACE
            break
        if encoded == _ENCODED_SPACE:
            last_space_end = len(pieces)
        pieces.append(encoded)
        length += len(encoded)

    if truncated and last_space_end:
        pieces = pieces[:last_space_end]
    return "".join(pieces)


class PollinationsImageService:
    name = "pollinations"

    def __init__(self, settings: Settings):
        self.settings = settings

    def _query(self, params: ImageParams) -> str:
        return "?" + urlencode(
            {
                "width": params.width,
                "height": params.height,
                "nologo": "true",
                "enhance": "true",
            }
        )

    def build_url(self, prompt: str, params: ImageParams) -> str:
        base = self.settings.fallback_base_url
        if not base.endswith("/"):
            base += "/"
        query = self._query(params)
        cleaned = collapse_whitespace(prompt)

        encoded = encode_prompt(cleaned)
        max_length = self.settings.fallback_max_url_length
        if len(base) + len(encoded) + len(query) <= max_length:
            return f"{base}{encoded}{query}"

        budget = max_length - len(base) - len(query)
        truncated = truncate_encoded(cleaned, budget)
        logger.warning(
            "Fallback URL too long (%d chars), truncating encoded prompt from %d to %d chars",
            len(base) + len(encoded) + len(query),
            len(encoded),
            len(truncated),
        )
        return f"{base}{truncated}{query}"

    async def synthesize_image(self, prompt: str, params: ImageParams) -> str:
        return self.build_url(prompt, params)
