"""LLM response schemas for structured output."""
from debrief_service.schemas.debrief import SessionDebriefContent

# JSON schema handed to the model; camelCase keys, as the model must answer
SESSION_DEBRIEF_SCHEMA = SessionDebriefContent.model_json_schema(by_alias=True)
