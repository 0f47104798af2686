from .pipeline.model import Pipeline, CommandStep, GroupStep, TriggerStep
from .upload.config import PipelineUploadConfig, UploadContext

__all__ = ["Pipeline", "CommandStep", "GroupStep", "TriggerStep", "PipelineUploadConfig", "UploadContext"]
