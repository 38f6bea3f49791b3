"""
Stage type registry.

Maps stage type names from the pipeline config to factories.
"""

from pathlib import Path
from typing import Callable, Dict, List

from app.models.schemas import PipelineConfig
from app.utils.config import ConfigurationError, Settings
from domains.document_pipeline.destinations import build_destination
from domains.document_pipeline.stages.base import Stage
from domains.document_pipeline.stages.bundle import BundleStage
from domains.document_pipeline.stages.chatgpt import ChatGPTStage
from domains.document_pipeline.stages.mathpix import MathpixStage
from domains.document_pipeline.stages.obsidian import ObsidianStage
from domains.document_pipeline.stages.temp_storage import TempStorageStage

StageFactory = Callable[[PipelineConfig, Settings], Stage]


def _temp_storage(config: PipelineConfig, settings: Settings) -> Stage:
    return TempStorageStage(Path(config.temp_storage_folder))


def _mathpix(config: PipelineConfig, settings: Settings) -> Stage:
    return MathpixStage(
        app_id=settings.mathpix_app_id,
        app_key=settings.mathpix_app_key,
        poll_interval=settings.mathpix_poll_interval,
        timeout=settings.mathpix_timeout,
    )


def _chatgpt(config: PipelineConfig, settings: Settings) -> Stage:
    return ChatGPTStage(api_key=settings.chatgpt_api_key, model=settings.chatgpt_model)


def _obsidian(config: PipelineConfig, settings: Settings) -> Stage:
    return ObsidianStage()


def _bundle(config: PipelineConfig, settings: Settings) -> Stage:
    return BundleStage(
        bundles=config.bundles,
        temp_storage_folder=Path(config.temp_storage_folder),
        destination=build_destination(config.dest_store),
    )


# Registry mapping type names to stage factories
STAGE_TYPES: Dict[str, StageFactory] = {
    "temp_storage": _temp_storage,
    "mathpix": _mathpix,
    "chatgpt": _chatgpt,
    "obsidian": _obsidian,
    "bundle": _bundle,
}


def create_stage(type_name: str, config: PipelineConfig, settings: Settings) -> Stage:
    """
    Factory function to create stage instances.

    Raises:
        ConfigurationError: If the stage type is unknown
    """
    factory = STAGE_TYPES.get(type_name)
    if factory is None:
        valid_types = ", ".join(STAGE_TYPES.keys())
        raise ConfigurationError(f"Unknown stage type '{type_name}'. Valid types: {valid_types}")
    return factory(config, settings)


def build_stages(config: PipelineConfig, settings: Settings) -> List[Stage]:
    """Create the configured stages in pipeline order."""
    return [create_stage(name, config, settings) for name in config.stages]
