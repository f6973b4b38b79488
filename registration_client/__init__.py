from registration_client.api import ApiError, RegistrationApiClient
from registration_client.drafts import (
    DraftAttachment,
    DraftCache,
    DraftLost,
    DraftRecord,
    DraftResolver,
    DraftState,
    LocalDraftStore,
    ReuploadRequired,
    SessionDraftStore,
)

__all__ = [
    "ApiError",
    "RegistrationApiClient",
    "DraftAttachment",
    "DraftCache",
    "DraftLost",
    "DraftRecord",
    "DraftResolver",
    "DraftState",
    "LocalDraftStore",
    "ReuploadRequired",
    "SessionDraftStore",
]
