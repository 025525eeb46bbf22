"""
Services Module - Infrastructure services for the workflow run service.

- logging_config: Log formatting, request/run context, run audit trail
- ai: Model access, step narration and step planning
"""
