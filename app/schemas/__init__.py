"""
app.schemas
~~~~~~~~~~~
Pydantic schemas and models for the API and the realtime channel.
"""
from app.schemas.api_response import ApiResponse
from app.schemas.dj import (
    DJSession,
    DJSettings,
    DJSettingsUpdate,
    Identity,
    PlayedTrack,
    Track,
    TrackRequest,
)
from app.schemas.realtime import ClientMessage, ServerEvent
from app.schemas.rooms import HealthData, LiveChannelsData, MemberData, RoomInfoData

# Call model_rebuild to resolve forward references in generic Pydantic models.
ApiResponse.model_rebuild()
