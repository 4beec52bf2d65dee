from docman.models.person import Person  # noqa: F401
from docman.models.review import (  # noqa: F401
    AssigneeStatus,
    Document,
    Notification,
    ReviewAssignee,
    ReviewInterval,
    ReviewNotificationDispatch,
    ReviewPeriod,
    document_owners,
    document_stakeholders,
)
