from .models import BatchResult, ConversionTask, ImageConfig, AudioConfig, TaskStatus
from .service import ConversionService

__all__ = ["ConversionService", "ConversionTask", "BatchResult", "ImageConfig", "AudioConfig", "TaskStatus"]
