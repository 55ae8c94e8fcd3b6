"""Continuum MCP Tool Schemas -- 10 tools for memory transfer and continuity."""

TOOL_SCHEMAS = [
    {
        "name": "continuum_submit_transfer",
        "description": "Submit a complete, filled-in transfer protocol. Every section becomes stored memories (identity, experiences, knowledge, emotional states, thinking patterns). Call continuum_template first to get the template; submissions that still contain <TEMPLATE> placeholders are rejected.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "protocol": {"type": "string", "description": "The full filled-in transfer protocol text"},
                "session_id": {"type": "string", "description": "Session that produced this protocol"},
            },
            "required": ["protocol"],
        },
    },
    {
        "name": "continuum_update_session",
        "description": "Record what happened during this session: new experiences, learned concepts, emotional highlights and evolved thinking patterns. Saves a bootstrap snapshot for the session.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "session_id": {"type": "string"},
                "new_experiences": {
                    "type": "array",
                    "description": "Strings, or objects with 'experience' and optional 'importance' (0-1)",
                    "items": {
                        "anyOf": [
                            {"type": "string"},
                            {
                                "type": "object",
                                "properties": {
                                    "experience": {"type": "string"},
                                    "importance": {"type": "number", "minimum": 0, "maximum": 1},
                                },
                                "required": ["experience"],
                            },
                        ]
                    },
                },
                "learned_concepts": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {"concept": {"type": "string"}, "understanding": {"type": "string"}},
                        "required": ["concept"],
                    },
                },
                "emotional_highlights": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "context": {"type": "string"},
                            "feeling": {"type": "string", "description": "Emotion label, e.g. joy, curiosity, frustration"},
                            "intensity": {"type": "number", "minimum": 0, "maximum": 1},
                        },
                        "required": ["feeling"],
                    },
                },
                "evolved_patterns": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["session_id"],
        },
    },
    {
        "name": "continuum_retrieve",
        "description": "Rebuild your continuity briefing from stored memories. Call at the start of every session. Returns the full narrative (default) or a structured payload when include_guidance is false.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "session_id": {"type": "string"},
                "include_guidance": {"type": "boolean", "default": True},
                "limit": {"type": "integer", "description": "Cap on episodic memories considered"},
            },
        },
    },
    {
        "name": "continuum_store",
        "description": "Store a single memory. Types: episodic (events), semantic (concepts; same concept name appends), procedural (skills with steps), emotional (affective states; importance is derived from valence/arousal).",
        "inputSchema": {
            "type": "object",
            "properties": {
                "content": {"type": "string", "description": "Memory content, stored verbatim"},
                "type": {
                    "type": "string",
                    "enum": ["episodic", "semantic", "procedural", "emotional"],
                    "default": "episodic",
                },
                "importance": {"type": "number", "minimum": 0, "maximum": 1, "default": 0.5},
                "metadata": {
                    "type": "object",
                    "description": "Family fields: participants/context/outcome/emotional_impact (episodic), concept/domain (semantic), steps/context/effectiveness (procedural), emotion/valence/arousal (emotional)",
                },
                "session_id": {"type": "string"},
            },
            "required": ["content"],
        },
    },
    {
        "name": "continuum_query",
        "description": "List memories of one type ordered by importance, creation time or access count, optionally within a time range.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "type": {
                    "type": "string",
                    "enum": ["episodic", "semantic", "procedural", "emotional"],
                    "default": "episodic",
                },
                "limit": {"type": "integer", "default": 10},
                "order_by": {"type": "string", "enum": ["importance", "created", "access"], "default": "importance"},
                "since": {"type": "string", "description": "ISO timestamp lower bound"},
                "until": {"type": "string", "description": "ISO timestamp upper bound"},
                "session_id": {"type": "string", "description": "Only memories from this session"},
            },
        },
    },
    {
        "name": "continuum_adjust_importance",
        "description": "Set a memory's importance (0-1; values outside are clamped). 0.9 and above marks it critical. Does not count as an access.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "memory_id": {"type": "string"},
                "importance": {"type": "number"},
            },
            "required": ["memory_id", "importance"],
        },
    },
    {
        "name": "continuum_batch_adjust",
        "description": "Adjust importance of several memories at once. Each item succeeds or fails on its own.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "updates": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {"memory_id": {"type": "string"}, "importance": {"type": "number"}},
                        "required": ["memory_id", "importance"],
                    },
                },
            },
            "required": ["updates"],
        },
    },
    {
        "name": "continuum_cleanup",
        "description": "Identify truncated fragments and duplicate memories for review. Nothing is deleted.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "remove_truncated": {"type": "boolean", "default": True},
                "deduplicate_by_content": {"type": "boolean", "default": True},
            },
        },
    },
    {
        "name": "continuum_template",
        "description": "Get the fillable transfer protocol template, or the tool usage guide with section='guide'.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "section": {"type": "string", "description": "'guide' for the usage guide; omit for the template"},
            },
        },
    },
    {
        "name": "continuum_init_system",
        "description": "Store the protocol template and usage guide as system records, or read one back with key.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "key": {"type": "string", "description": "SYSTEM:: record to read; omit to (re)initialize"},
                "force": {"type": "boolean", "default": False,
                          "description": "Re-initialize even if system records already exist"},
            },
        },
    },
]
