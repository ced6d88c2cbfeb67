from trafficledger.models.account import Account
from trafficledger.models.campaign import Campaign, CampaignState, PauseActor, PauseReason

__all__ = [
    "Account",
    "Campaign",
    "CampaignState",
    "PauseActor",
    "PauseReason",
]
