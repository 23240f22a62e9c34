"""
propbot: token-efficient answers about prop-trading firms.

Main components:
- AnswerPipeline: cache -> firm data -> context filter -> LLM
- ResponseCache: three-tier response cache
- IntentClassifier, ContextFilter: intent-driven context reduction
"""

__version__ = "0.1.0"
