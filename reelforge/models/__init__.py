from reelforge.models.base import Base
from reelforge.models.clip import Clip
from reelforge.models.generation_job import GenerationJob
from reelforge.models.loop_render import LoopRender
from reelforge.models.video_request import VideoRequest

__all__ = [
    "Base",
    "Clip",
    "GenerationJob",
    "LoopRender",
    "VideoRequest",
]
