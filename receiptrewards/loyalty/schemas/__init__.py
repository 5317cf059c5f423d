from receiptrewards.loyalty.schemas.loyalty import (  # noqa: F401
    Eligibility,
    QRVisitRequest,
    RedeemRequest,
    RewardResponse,
    UseRewardRequest,
    VisitResponse,
)
