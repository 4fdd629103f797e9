"""
Test factories for generating realistic test data.

Uses factory_boy for declarative test data generation. Factories build plain
dicts of column values; the fixtures in conftest.py turn them into rows.
"""

from .client import ClientFactory, CompanyClientFactory
from .invoice import InvoiceFactory, DraftInvoiceFactory, PaidInvoiceFactory

__all__ = [
    "ClientFactory",
    "CompanyClientFactory",
    "InvoiceFactory",
    "DraftInvoiceFactory",
    "PaidInvoiceFactory",
]
