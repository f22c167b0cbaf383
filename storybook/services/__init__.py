from .image import OpenAIImageService
from .image_chain import FallbackImageChain
from .pollinations import PollinationsImageService
from .providers import create_vision_provider

__all__ = [
    "FallbackImageChain",
    "OpenAIImageService",
    "PollinationsImageService",
    "create_vision_provider",
]
