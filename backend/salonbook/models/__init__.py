from .tenancy import Tenant, Branch
from .customers import Customer, LoyaltyConfig, LoyaltyTransaction, WalletTransaction
from .catalog import CatalogItem, CatalogVariant, BranchPrice
from .benefits import CustomerMembership, CustomerPackage, PackageCredit, Coupon
from .appointments import Appointment, AppointmentService
from .checkout import CheckoutSession, AppointmentCheckoutLock
from .invoices import Invoice, InvoiceLine, InvoicePayment, CreditNote, DocumentSequence

__all__ = [
    'Tenant', 'Branch',
    'Customer', 'LoyaltyConfig', 'LoyaltyTransaction', 'WalletTransaction',
    'CatalogItem', 'CatalogVariant', 'BranchPrice',
    'CustomerMembership', 'CustomerPackage', 'PackageCredit', 'Coupon',
    'Appointment', 'AppointmentService',
    'CheckoutSession', 'AppointmentCheckoutLock',
    'Invoice', 'InvoiceLine', 'InvoicePayment', 'CreditNote', 'DocumentSequence',
]
