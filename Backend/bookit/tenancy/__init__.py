"""
Multi-tenancy package for BookIt.

This package provides tenant isolation primitives; the tenant is a business.

Modules:
    context: BusinessContext resolution from URL slug or business id
    queries: Business-scoped query helpers and the partial update builder
"""

from .context import (
    BusinessContext,
    BusinessResolutionSource,
    get_business_context_from_id,
    get_business_context_from_slug,
    resolve_business_from_id,
    resolve_business_from_slug,
)

from .queries import (
    # Composable helpers
    scoped_select,
    scoped_update,
    tenant_filter,
    require_owned,
    # Service & staff queries
    list_services,
    list_staff,
    get_staff_by_ids,
    # Availability queries
    list_availability_rules,
    list_availability_exceptions,
    # Appointment queries
    get_appointment_by_id,
    list_appointments_in_range,
)

__all__ = [
    # Context
    "BusinessContext",
    "BusinessResolutionSource",
    "get_business_context_from_id",
    "get_business_context_from_slug",
    "resolve_business_from_id",
    "resolve_business_from_slug",
    # Query helpers
    "scoped_select",
    "scoped_update",
    "tenant_filter",
    "require_owned",
    "list_services",
    "list_staff",
    "get_staff_by_ids",
    "list_availability_rules",
    "list_availability_exceptions",
    "get_appointment_by_id",
    "list_appointments_in_range",
]
