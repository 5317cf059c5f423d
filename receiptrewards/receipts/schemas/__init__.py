from receiptrewards.receipts.schemas.base import (  # noqa: F401
    CustomerActionRequest,
    Decision,
    DuplicateMatches,
    ExtractionResult,
    FieldFailure,
    FraudScore,
    LinkStoreRequest,
    ReceiptOutcome,
    ReceiptStatus,
    StoreReceiptConfig,
    ValidationOutcome,
)
from receiptrewards.receipts.schemas.review import (  # noqa: F401
    CustomerSummary,
    ReceiptSummary,
    ReviewDetail,
    ReviewRequest,
    StoreComparison,
)
