from logbook.capabilities.base import (
    CategorizationResult,
    Categorizer,
    CategoryLink,
    Embedder,
    EntityExtractionResult,
    EntityExtractor,
    ExtractionError,
    IndexPayload,
    PIIScrubber,
    PipelineCapabilities,
    SearchIndexer,
    TextExtractor,
)

__all__ = [
    "CategorizationResult",
    "Categorizer",
    "CategoryLink",
    "Embedder",
    "EntityExtractionResult",
    "EntityExtractor",
    "ExtractionError",
    "IndexPayload",
    "PIIScrubber",
    "PipelineCapabilities",
    "SearchIndexer",
    "TextExtractor",
]
