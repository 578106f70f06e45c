"""Client side of an attempt: HTTP API, countdown session, realtime feed."""
from vince.client.api import ApiError, ApiRejected, TransientApiError, VinceApi
from vince.client.session import AttemptSession
