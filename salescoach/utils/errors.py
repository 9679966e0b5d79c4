"""
Domain exceptions

Per-unit failures (one seller, one message) never raise out of the
orchestrators; they are collected into result objects. These exceptions are
reserved for conditions that abort a whole run.
"""


class SalesCoachError(Exception):
    """Base class for application errors"""


class ConfigurationError(SalesCoachError):
    """A run cannot proceed: unknown moment, missing tenant data, missing credentials"""


class TenantNotFoundError(ConfigurationError):
    """The tenant id does not exist"""

    def __init__(self, tenant_id: str):
        super().__init__(f"Tenant not found: {tenant_id}")
        self.tenant_id = tenant_id
