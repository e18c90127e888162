"""Response schemas for the three analysis stages (JSON Schema)."""

from __future__ import annotations

_STRING_LIST = {"type": "array", "items": {"type": "string"}}

MAIN_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "transcript": {"type": "string"},
        "tags": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "string"},
                    "label": {"type": "string"},
                    "color": {"type": "string"},
                },
                "required": ["id", "label", "color"],
            },
        },
        "highlights": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "string"},
                    "text": {"type": "string"},
                    "tagId": {"type": "string"},
                },
                "required": ["id", "text", "tagId"],
            },
        },
        "painPoints": _STRING_LIST,
        "opportunities": _STRING_LIST,
        "patterns": _STRING_LIST,
        "sentiment": {
            "type": "object",
            "properties": {
                "label": {"type": "string", "enum": ["Positive", "Neutral", "Negative", "Mixed"]},
                "score": {"type": "integer"},
                "positivePct": {"type": "integer"},
                "neutralPct": {"type": "integer"},
                "negativePct": {"type": "integer"},
            },
            "required": ["label", "score"],
        },
        "keyFindings": _STRING_LIST,
        "keyQuotes": _STRING_LIST,
        "recommendations": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "text": {"type": "string"},
                    "priority": {"type": "string", "enum": ["High", "Medium", "Low"]},
                },
                "required": ["text", "priority"],
            },
        },
    },
    "required": ["transcript", "tags", "highlights"],
}

AFFINITY_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "items": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "string"},
                    "type": {"type": "string", "enum": ["theme", "subcluster"]},
                    "title": {"type": "string"},
                    "color": {"type": "string"},
                    "parentId": {"type": "string"},
                    "highlightIds": _STRING_LIST,
                },
                "required": ["id", "type", "title"],
            },
        },
    },
    "required": ["items"],
}

INSIGHTS_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "insightsTable": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "quoteId": {"type": "string"},
                    "theme": {"type": "string"},
                    "emotion": {"type": "string"},
                    "need": {"type": "string"},
                    "opportunity": {"type": "string"},
                    "proposedUXSolution": {"type": "string"},
                },
                "required": ["quoteId", "theme", "emotion", "need", "opportunity", "proposedUXSolution"],
            },
        },
        "keyNeeds": _STRING_LIST,
        "keyPainPoints": _STRING_LIST,
        "keyOpportunities": _STRING_LIST,
        "synthesis": {"type": "string"},
        "wordCloud": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "word": {"type": "string"},
                    "count": {"type": "integer"},
                },
                "required": ["word", "count"],
            },
        },
        "problemPatternsChart": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "theme": {"type": "string"},
                    "frequency": {"type": "integer"},
                    "intensity": {"type": "integer", "minimum": 1, "maximum": 5},
                },
                "required": ["theme", "frequency", "intensity"],
            },
        },
    },
    "required": ["insightsTable"],
}
