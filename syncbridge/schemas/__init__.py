from .base import BaseSchema, TimestampedSchema
from .mapping import MappingData, MappingRead, TransactionRead, LedgerResponse, normalize_sku
