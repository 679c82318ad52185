from app.services.openai_service import OpenAIService
from app.services.profile_generator import ProfileGenerator
from app.services.nudge_pipeline import NudgePipeline
from app.services.call_session_manager import CallSessionManager

__all__ = [
    'OpenAIService',
    'ProfileGenerator',
    'NudgePipeline',
    'CallSessionManager',
]
