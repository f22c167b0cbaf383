from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from storybook.agents.utils import collapse_whitespace, strip_special_chars, truncate_at_word
from storybook.services.providers import ImagePayload

SUBJECT_ONLY_PROMPT = """You are analyzing a REAL PHOTO of a child uploaded by the user. This exact child MUST appear in the final illustration.

Analysis / 分析要求
- Face: facial features, expression, skin tone, eye color, distinctive marks.
- Hair: color, length, style.
- Clothing: garments, colors, accessories, exactly as shown.
- Pose: body position and gesture.

Output Rules / 输出规则
- Write ONE image generation prompt for a storybook illustration of this specific child as a fairy tale character.
- The character must keep the child's face, hair, clothing and features; never describe a generic child.
- Style: cute cartoon, pastel colors, hand drawn, NOT realistic, safe for children.
- Do NOT include a name or a story.
- Output ONLY the prompt, nothing else.
"""

SUBJECT_WITH_BACKGROUND_PROMPT = """You are analyzing two images. Pay close attention to which image is which.

IMAGE 1 (the first image): the BACKGROUND scene/template. Preserve EVERYTHING in it exactly as it is.
IMAGE 2 (the second image): a REAL PHOTO of a child uploaded by the user. Use THIS child's exact appearance.

IMAGE 1 analysis / 背景分析
- Every element: scene, objects, animals, decorations and any text or writing.
- Color palette, artistic style, mood, lighting, composition.
- If a child/character is present, note its position and pose.

IMAGE 2 analysis / 照片分析
- Face: facial features, expression, skin tone, eye color, distinctive marks.
- Hair: color, length, style.
- Clothing: garments, colors, accessories, exactly as shown.
- Pose: body position and gesture.

Output Rules / 输出规则
- Write ONE image generation prompt that recreates the scene of IMAGE 1 with every background element, color, object, animal, text and style preserved.
- Replace ONLY the existing character of IMAGE 1 with the child from IMAGE 2, in the same position and pose that character occupied.
- The child must keep the exact face, hair, clothing and features from IMAGE 2 and look naturally integrated into the scene.
- Keep the prompt SHORT (max 300 words) and use simple, clear language.
- Output ONLY the prompt, nothing else.
"""

REPLACE_CHILD_PROMPT = """You are analyzing two images:
1. A template illustration of a children's book cover with a child in an illustrated scene.
2. A real photo of a child.

Your task:
- Analyze the template: scene, composition, colors, style, position and pose of the child, background elements, animals and text placement.
- Analyze the photo: the child's appearance, facial features, hair color, clothing, pose and expression.
- Write a detailed image generation prompt that recreates the template scene with the same artistic style, composition and elements (animals, scenery, text) exactly as in the template, with the child from the photo replacing the original child in the same position and pose.

Output ONLY the image generation prompt.
"""

SUBJECT_ONLY_IMAGE_TEMPLATE = (
    "storybook illustration of a fantasy character, inspired by: {description}, "
    "cute cartoon style, pastel colors, hand drawn, NOT realistic, safe for children"
)
BACKGROUND_IMAGE_SUFFIX = ", storybook illustration, high quality, seamless integration"
DEFAULT_IMAGE_PROMPT = (
    "storybook illustration of a fantasy character, cute cartoon style, pastel colors, "
    "hand drawn, NOT realistic, safe for children"
)

BACKGROUND_PROMPT_MAX_CHARS = 800


class PromptMode(str, Enum):
    SUBJECT_ONLY = "subject_only"
    SUBJECT_WITH_BACKGROUND = "subject_with_background"


@dataclass(frozen=True, slots=True)
class AnalysisPrompt:
    mode: PromptMode
    text: str
    # 发送顺序：背景（IMAGE 1）在前，照片（IMAGE 2）在后
    images: tuple[ImagePayload, ...]

    @property
    def background_used(self) -> bool:
        return self.mode is PromptMode.SUBJECT_WITH_BACKGROUND


def build_analysis_prompt(subject: ImagePayload, background: ImagePayload | None = None) -> AnalysisPrompt:
    if background is None:
        return AnalysisPrompt(mode=PromptMode.SUBJECT_ONLY, text=SUBJECT_ONLY_PROMPT, images=(subject,))
    return AnalysisPrompt(
        mode=PromptMode.SUBJECT_WITH_BACKGROUND,
        text=SUBJECT_WITH_BACKGROUND_PROMPT,
        images=(background, subject),
    )


def build_image_prompt(description: str, *, background_used: bool) -> str:
    """把视觉模型的描述转换为最终的图像生成 prompt"""
    description = collapse_whitespace(description)
    if not description:
        return DEFAULT_IMAGE_PROMPT

    if background_used:
        cleaned = truncate_at_word(strip_special_chars(description), BACKGROUND_PROMPT_MAX_CHARS)
        return collapse_whitespace(cleaned + BACKGROUND_IMAGE_SUFFIX)

    return collapse_whitespace(SUBJECT_ONLY_IMAGE_TEMPLATE.format(description=description))


def build_replace_child_prompt(template: ImagePayload, child: ImagePayload) -> AnalysisPrompt:
    return AnalysisPrompt(
        mode=PromptMode.SUBJECT_WITH_BACKGROUND,
        text=REPLACE_CHILD_PROMPT,
        images=(template, child),
    )


DESCRIBE_IMAGE_PROMPT = (
    "Describe this image in detail. What do you see? Include colors, objects, people, style, "
    "and any text if present."
)
