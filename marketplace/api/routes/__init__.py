from marketplace.api.routes import (
    admin,
    agents,
    partners,
    payouts,
)

__all__ = [
    "admin",
    "agents",
    "partners",
    "payouts",
]
