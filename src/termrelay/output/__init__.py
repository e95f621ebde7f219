"""
Output processing: line classification, incremental translation and
per-turn aggregation of CLI output.
"""

from termrelay.output.aggregator import AggregatedMessage, MessageAggregator
from termrelay.output.classifier import LineClassifier, PatternClassifier
from termrelay.output.events import EventType, ParsedEvent
from termrelay.output.translator import OutputTranslator
from termrelay.output.usage import UsageFigures, parse_usage

__all__ = [
    "AggregatedMessage",
    "MessageAggregator",
    "LineClassifier",
    "PatternClassifier",
    "EventType",
    "ParsedEvent",
    "OutputTranslator",
    "UsageFigures",
    "parse_usage",
]
