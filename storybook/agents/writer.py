from __future__ import annotations

from collections.abc import Sequence

from storybook.agents.base import BaseAgent
from storybook.services.providers import ChatTurn, ProviderResponse


class WriterAgent(BaseAgent):
    """纯文本生成 / 多轮对话 / 续写"""

    name = "writer"

    async def generate(
        self,
        prompt: str,
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ProviderResponse:
        vision = self.ctx.vision

        async def _call() -> ProviderResponse:
            return await vision.generate_text(prompt, model=model, temperature=temperature, max_tokens=max_tokens)

        return await self.with_retry(_call, label=f"{vision.name} generate")

    async def chat(
        self,
        message: str,
        *,
        history: Sequence[ChatTurn] = (),
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ProviderResponse:
        vision = self.ctx.vision

        async def _call() -> ProviderResponse:
            return await vision.chat(
                message,
                history=history,
                model=model,
                temperature=temperature,
                max_tokens=max_tokens,
            )

        return await self.with_retry(_call, label=f"{vision.name} chat")

    async def complete(self, text: str) -> ProviderResponse:
        return await self.generate(f"Complete the following text: {text}")
