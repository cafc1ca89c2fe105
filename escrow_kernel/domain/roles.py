"""
Stakeholder roles and interest-bearer variants.

Architecture position:
    Kernel > Domain -- pure values, zero I/O.  Imported by models, engines
    and config alike.
"""

from enum import Enum


class StakeholderRole(str, Enum):
    """Parties that may receive a share of a sale."""

    PLATFORM = "platform"  # Platform operator (global account)
    TENANT = "tenant"  # Reselling organization; receives the residual
    AFFILIATE = "affiliate"  # Attributed at checkout
    FACTORY = "factory"  # Supplier, configured per product
    INDUSTRY = "industry"  # Supplier, configured per product
    COPRODUCER = "coproducer"  # Supplier, configured per product


SUPPLIER_ROLES: frozenset[StakeholderRole] = frozenset({
    StakeholderRole.FACTORY,
    StakeholderRole.INDUSTRY,
    StakeholderRole.COPRODUCER,
})

# Roles whose shares are recorded before payment confirmation.
PRIOR_ALLOCATION_ROLES: frozenset[StakeholderRole] = frozenset({
    StakeholderRole.AFFILIATE,
    StakeholderRole.COPRODUCER,
})

# Display/breakdown order; the residual tenant line is always last.
ROLE_ORDER: tuple[StakeholderRole, ...] = (
    StakeholderRole.PLATFORM,
    StakeholderRole.FACTORY,
    StakeholderRole.INDUSTRY,
    StakeholderRole.COPRODUCER,
    StakeholderRole.AFFILIATE,
    StakeholderRole.TENANT,
)

# The platform account is global: one row, outside any tenant.
PLATFORM_OWNER_REF = "platform"
GLOBAL_SCOPE = "*"


class InterestBearer(str, Enum):
    """Who economically absorbs installment interest on a card sale."""

    BUYER = "buyer"
    SELLER = "seller"


def role_rank(role: StakeholderRole) -> int:
    """Sort key following ROLE_ORDER."""
    return ROLE_ORDER.index(role)


def account_scope(
    role: StakeholderRole, owner_ref: str, tenant_id: str,
) -> tuple[StakeholderRole, str, str]:
    """Canonical (role, owner_ref, tenant_id); the platform is global."""
    if role == StakeholderRole.PLATFORM:
        return role, PLATFORM_OWNER_REF, GLOBAL_SCOPE
    return role, owner_ref, tenant_id
