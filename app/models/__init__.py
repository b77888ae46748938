from app.models.billing import (  # noqa: F401
    GatewayTransaction,
    GatewayTransactionStatus,
    Invoice,
    InvoiceStatus,
    Payment,
)
from app.models.domain_settings import (  # noqa: F401
    DomainSetting,
    SettingDomain,
    SettingValueType,
)
from app.models.enforcement import (  # noqa: F401
    AttemptOutcome,
    SuspensionAction,
    SuspensionAttempt,
)
from app.models.network import EnforcementTarget  # noqa: F401
from app.models.subscriber import (  # noqa: F401
    ConnectionType,
    Customer,
    CustomerStatus,
)
