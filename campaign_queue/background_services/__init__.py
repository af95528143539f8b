from campaign_queue.background_services.collaborators import Collaborators, build_collaborators
from campaign_queue.background_services.crm_client import SimulatedCrmClient
from campaign_queue.background_services.mail_sender import SimulatedMailSender
from campaign_queue.background_services.sentiment_service import KeywordSentimentAnalyzer, OpenAISentimentAnalyzer

__all__ = [
    "Collaborators",
    "build_collaborators",
    "SimulatedCrmClient",
    "SimulatedMailSender",
    "KeywordSentimentAnalyzer",
    "OpenAISentimentAnalyzer",
]
