from .plan import Plan, PlanPricing  # noqa: F401
from .org import Org  # noqa: F401
from .payments import PaymentOrder  # noqa: F401
