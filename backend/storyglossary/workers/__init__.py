"""arq background task workers for the glossary service.

Entry point:
    arq storyglossary.workers.settings.WorkerSettings

Tasks:
    process_glossary_extraction     Chunked extraction, merge and consolidation
    process_glossary_consolidation  Replay the raw log and consolidate
"""

from storyglossary.workers.settings import WorkerSettings
from storyglossary.workers.tasks import (
    process_glossary_consolidation,
    process_glossary_extraction,
)

__all__ = [
    "WorkerSettings",
    "process_glossary_consolidation",
    "process_glossary_extraction",
]
