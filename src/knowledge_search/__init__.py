"""Knowledge search package."""

from .config import ChunkingConfig, IngestConfig, RetrievalConfig, Settings

__all__ = ["ChunkingConfig", "IngestConfig", "RetrievalConfig", "Settings"]
