from receiptrewards.receipts.models.receipt import ReceiptModel  # noqa: F401
from receiptrewards.receipts.models.store import StoreModel  # noqa: F401
