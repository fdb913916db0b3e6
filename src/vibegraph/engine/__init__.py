"""Engine domain: category mapping and the classification pipeline."""

from vibegraph.engine.category_mapper import CategoryMapper
from vibegraph.engine.category_mapper import CategoryMatch
from vibegraph.engine.category_mapper import build_default_category_mapper
from vibegraph.engine.classification import ClassificationPipeline
from vibegraph.engine.classification import ClassificationRunResult
from vibegraph.engine.classification import LLMAdapter
from vibegraph.engine.classification import LLMError
from vibegraph.engine.llm_adapters import build_llm_adapter
from vibegraph.engine.llm_adapters import NoopLLMAdapter
from vibegraph.engine.llm_adapters import OpenAICompatibleLLMAdapter
from vibegraph.engine.parsing import ClassificationParser
from vibegraph.engine.parsing import ParseOutcome

__all__ = [
    "CategoryMapper",
    "CategoryMatch",
    "ClassificationParser",
    "ClassificationPipeline",
    "ClassificationRunResult",
    "LLMAdapter",
    "LLMError",
    "NoopLLMAdapter",
    "OpenAICompatibleLLMAdapter",
    "ParseOutcome",
    "build_default_category_mapper",
    "build_llm_adapter",
]
