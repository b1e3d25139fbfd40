from investkaps.models.stock import StockData, StockCandle
from investkaps.models.user import User
from investkaps.models.strategy import Strategy
from investkaps.models.subscription import (
    PlanStrategyLink,
    SubscriptionNotification,
    SubscriptionPlan,
    UserSubscription,
)
from investkaps.models.recommendation import (
    RecommendationDelivery,
    RecommendationStrategyLink,
    RecommendationView,
    StockRecommendation,
)
from investkaps.models.broker_token import KiteToken
from investkaps.models.payment import PaymentRequest
from investkaps.models.newsletter import NewsletterSubscriber
from investkaps.models.kyc import KycVerification
from investkaps.models.document import Document

__all__ = [
    "StockData",
    "StockCandle",
    "User",
    "Strategy",
    "SubscriptionPlan",
    "PlanStrategyLink",
    "UserSubscription",
    "SubscriptionNotification",
    "StockRecommendation",
    "RecommendationStrategyLink",
    "RecommendationView",
    "RecommendationDelivery",
    "KiteToken",
    "PaymentRequest",
    "NewsletterSubscriber",
    "KycVerification",
    "Document",
]
