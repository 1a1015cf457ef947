from app.domain.models.publication_job import PublicationJob
from app.domain.models.publication_job_event import PublicationJobEvent
from app.domain.models.publication_queue_message import PublicationQueueMessage
from app.domain.models.social_connection import SocialConnection

__all__ = [
    "PublicationJob",
    "PublicationJobEvent",
    "PublicationQueueMessage",
    "SocialConnection",
]
