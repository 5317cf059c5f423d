from receiptrewards.loyalty.models.customer import CustomerModel  # noqa: F401
from receiptrewards.loyalty.models.reward import RewardModel, RewardRuleModel  # noqa: F401
from receiptrewards.loyalty.models.visit import VisitModel  # noqa: F401
